#!/usr/local/bin/env python

#=============================================================================================
# MODULE DOCSTRING
#=============================================================================================

"""
STMD command-line interface (cli)

"""

#=============================================================================================
# MODULE IMPORTS
#=============================================================================================

import inspect

import docopt

from . import __version__
from . import commands

#=============================================================================================
# COMMAND-LINE INTERFACE
#=============================================================================================

usage = """
STMD

Usage:
  stmd [-h | --help] COMMAND [<ARGS>]...

Commands:
  help                          Get specific help for the command given in ARGS
  check                         Validate a YAML configuration and print the binning.
  status                        Print the stage and convergence of checkpoint files.
  analyze                       Print or write the per-bin table and entropy of a checkpoint.

Options:
  -h --help                     Display this message and quit

See 'stmd help COMMAND' for more information on a specific command.

"""


def main(argv=None):
    # The options_first flag must be True for <ARGS> to act as a wildcard for options as well.
    args = docopt.docopt(usage, version=__version__, argv=argv, options_first=True)

    dispatched = False  # Flag set to True if we have correctly dispatched a command.
    # Build the list of commands based on the <command>.py modules in the ./commands folder
    command_list = [module[0] for module in inspect.getmembers(commands, inspect.ismodule)]

    if args['COMMAND'] in command_list:
        command = args['COMMAND']
        command_usage = getattr(commands, command).usage
        command_args = docopt.docopt(command_usage, version=__version__, argv=argv)  # This will terminate if command is invalid
        dispatched = getattr(commands, command).dispatch(command_args)

    # If unsuccessful, print usage and exit with an error.
    if not dispatched:
        print(usage)
        return True

    # Indicate success.
    return False
