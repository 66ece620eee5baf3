#!/usr/local/bin/env python

"""
STMD

Statistical temperature molecular dynamics: an adaptive estimator of the
statistical temperature T(E) driving a generalized-ensemble simulation,
with optional replica exchange between walkers.

"""

# Define global version.
try:
    from . import version  # Generated by setup.py.
except ImportError:
    # Fill in information manually.
    class _Version:
        short_version = "dev"
        version = "dev"
        full_version = "dev"
        git_revision = "dev"
        release = False

    version = _Version()

__version__ = version.version

# Self module imports
from . import utils
from . import mpi
from .utils import STMDError, ConfigurationError
from .histogram import EnergyBinHistogram, SamplingRangeError
from .estimator import EstimatorState, TemperatureEstimator
from .stages import StageController, ConvergenceError, create_policy
from .storage import CheckpointCodec, RestartFormatError
from .stmd import STMD
from .repex import ReplicaExchangeCoordinator
