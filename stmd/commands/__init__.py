#!/usr/local/bin/env python

"""
STMD cli commands.

"""

from . import help
from . import check
from . import status
from . import analyze
