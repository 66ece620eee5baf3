#!/usr/local/bin/env python

# =============================================================================================
# MODULE DOCSTRING
# =============================================================================================

"""
Validate a configuration script.

"""

# =============================================================================================
# MODULE IMPORTS
# =============================================================================================

import math

from .. import options, utils
from ..utils import ConfigurationError

# =============================================================================================
# COMMAND-LINE INTERFACE
# =============================================================================================

usage = """
STMD check

Usage:
  stmd check (-y FILEPATH | --yaml=FILEPATH) [-v | --verbose]

Description:
  Validate the YAML configuration and print the energy binning and the f tolerances
  derived from it.

Required Arguments:
  -y, --yaml=FILEPATH           Path to the YAML configuration.

General Options:
  -v, --verbose                 Print the validated options.

"""

# =============================================================================================
# COMMAND DISPATCH
# =============================================================================================

def dispatch(args):
    utils.config_root_logger(args['--verbose'])
    try:
        stmd_options, replica_exchange_options = options.load_script(args['--yaml'])
    except ConfigurationError as e:
        print('Invalid configuration:\n{}'.format(e))
        return False

    bin_width = stmd_options['bin_width']
    bin_min = utils.nearest_integer(stmd_options['energy_min'] / bin_width)
    bin_max = utils.nearest_integer(stmd_options['energy_max'] / bin_width)
    f = math.exp(2 * bin_width * stmd_options['initial_df'])
    print('Configuration is valid.')
    print('{} bins from {} to {} (bin indices {} to {})'.format(
        bin_max - bin_min + 1, stmd_options['energy_min'], stmd_options['energy_max'],
        bin_min, bin_max))
    print('Initial f = {:.10f}, refine at f <= {:.10f}, production at f <= {:.10f}'.format(
        f, math.exp(2 * bin_width * stmd_options['final_df']),
        math.exp(2 * bin_width * stmd_options['final_df'] / 10)))
    if replica_exchange_options is not None:
        print('Replica exchange: {} trials every {} steps'.format(
            replica_exchange_options['n_trials'], replica_exchange_options['exchange_interval']))

    if utils.is_terminal_verbose():
        for name, value in sorted(stmd_options.items()):
            print('    {}: {}'.format(name, value))
    return True
