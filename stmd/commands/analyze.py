#!/usr/local/bin/env python

# =============================================================================================
# MODULE DOCSTRING
# =============================================================================================

"""
Analyze a walker checkpoint.

"""

# =============================================================================================
# MODULE IMPORTS
# =============================================================================================

from .. import analyze

# =============================================================================================
# COMMAND-LINE INTERFACE
# =============================================================================================

usage = """
STMD analyze

Usage:
  stmd analyze CHECKPOINT [--output=FILEPATH]

Description:
  Print the per-bin statistical temperature, histograms and entropy of a checkpoint.
  The energy and entropy columns are available only for NetCDF checkpoints.

Required Arguments:
  CHECKPOINT                    Path to a NetCDF (.nc) or text checkpoint file.

General Options:
  --output=FILEPATH             Write the table to this file instead of printing it.

"""

# =============================================================================================
# COMMAND DISPATCH
# =============================================================================================

def dispatch(args):
    summary = analyze.read_checkpoint_summary(args['CHECKPOINT'])
    table = analyze.format_bin_table(summary)
    if args['--output']:
        with open(args['--output'], 'w') as f:
            f.write(table)
    else:
        print(analyze.format_status(summary))
        print(table)
    return True
