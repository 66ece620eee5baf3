#!/usr/local/bin/env python

#=============================================================================================
# MODULE DOCSTRING
#=============================================================================================

"""
Print STMD help.

"""

#=============================================================================================
# COMMAND-LINE INTERFACE
#=============================================================================================

usage = """
STMD help

Usage:
  stmd help [COMMAND]

Description:
  Get COMMAND's usage usage and arguments

Required Arguments:
  COMMAND                       Name of the command you want more information about

"""

#=============================================================================================
# COMMAND DISPATCH
#=============================================================================================

def dispatch(args):
    command = args.get('COMMAND')
    # Handle the null case or itself
    if command is None or command == 'help':
        from stmd import cli
        print(cli.usage)
        return True

    from stmd import commands
    try:
        command_usage = getattr(commands, command).usage
    except AttributeError:
        return False
    print(command_usage)
    return True
