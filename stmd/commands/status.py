#!/usr/local/bin/env python

# =============================================================================================
# MODULE DOCSTRING
# =============================================================================================

"""
Query checkpoint files for quick status.

"""

# =============================================================================================
# MODULE IMPORTS
# =============================================================================================

from .. import analyze

# =============================================================================================
# COMMAND-LINE INTERFACE
# =============================================================================================

usage = """
STMD status

Usage:
  stmd status CHECKPOINT...

Description:
  Print the stage, the modification factor and the counters of each walker checkpoint.

Required Arguments:
  CHECKPOINT                    Path to a NetCDF (.nc) or text checkpoint file.

"""

# =============================================================================================
# COMMAND DISPATCH
# =============================================================================================

def dispatch(args):
    analyze.print_status(args['CHECKPOINT'])
    return True
