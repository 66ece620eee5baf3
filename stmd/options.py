#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
Options
=======

Configuration of the walkers and of the replica exchange.

A configuration is a YAML script with a mandatory ``stmd`` section and an
optional ``replica_exchange`` section, for example::

    stmd:
        checkpoint_interval: 1000
        reduction_policy: flatness-gated
        initial_df: 0.01
        final_df: 0.0001
        low_temperature: 300.0
        high_temperature: 800.0
        energy_min: -12000.0
        energy_max: -6000.0
        bin_width: 20.0
        dig_interval: 100
        reduction_interval: 5000
        reference_temperature: 300.0
        restart: no
        output_directory: output

    replica_exchange:
        exchange_interval: 500
        n_trials: 2000
        swap_seed: 0
        boltzmann_seed: 2048
        fix_id: stmd

Every section is validated with cerberus. All errors are fatal and are
raised as :class:`~stmd.utils.ConfigurationError`.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import os
import logging

import yaml

from . import schema
from .utils import ConfigurationError

logger = logging.getLogger(__name__)


# ==============================================================================
# SCHEMAS
# ==============================================================================

_STMD_SCHEMA = yaml.safe_load("""
checkpoint_interval:
    type: integer
    required: yes
    min: 1
reduction_policy:
    type: string
    required: yes
    check_with: is_reduction_policy
initial_df:
    type: float
    required: yes
    coerce: int_to_float
    max: 1.0
    check_with: is_positive
final_df:
    type: float
    required: yes
    coerce: int_to_float
    min: 1.0e-5
low_temperature:
    type: float
    required: yes
    coerce: int_to_float
    check_with: is_positive
high_temperature:
    type: float
    required: yes
    coerce: int_to_float
    check_with: greater_than_low_temperature
energy_min:
    type: float
    required: yes
    coerce: int_to_float
energy_max:
    type: float
    required: yes
    coerce: int_to_float
    check_with: greater_than_energy_min
bin_width:
    type: float
    required: yes
    coerce: int_to_float
    check_with: [is_positive, at_least_three_bins]
dig_interval:
    type: integer
    required: yes
    min: 1
reduction_interval:
    type: integer
    required: yes
    min: 1
reference_temperature:
    type: float
    required: yes
    coerce: int_to_float
    check_with: is_positive
restart:
    type: boolean
    coerce: yes_no_to_bool
    default: no
output_directory:
    type: string
    default: .
checkpoint_format:
    type: string
    allowed: [netcdf, text]
    default: netcdf
write_diagnostics:
    type: boolean
    coerce: yes_no_to_bool
    default: yes
""")

_REPLICA_EXCHANGE_SCHEMA = yaml.safe_load("""
exchange_interval:
    type: integer
    required: yes
    min: 1
n_trials:
    type: integer
    required: yes
    min: 1
swap_seed:
    type: integer
    required: yes
    min: 0
boltzmann_seed:
    type: integer
    required: yes
    min: 1
fix_id:
    type: string
    default: stmd
exchange_during_dig:
    type: boolean
    coerce: yes_no_to_bool
    default: no
set_temperatures:
    type: list
    nullable: yes
    default: null
    check_with: positive_float_list
""")


# ==============================================================================
# VALIDATION
# ==============================================================================

def _validate_section(section_name, section, section_schema):
    if not isinstance(section, dict):
        raise ConfigurationError("Section '{}' must be a dictionary, got {}".format(
            section_name, section))
    validator = schema.STMDCerberusValidator(section_schema)
    if validator.validate(section):
        return validator.document
    error = "Section '{}' did not validate! Check the schema error below for details\n{}"
    raise ConfigurationError(error.format(section_name, yaml.dump(validator.errors)))


def validate_stmd_options(options):
    """Validate and normalize the walker options.

    Parameters
    ----------
    options : dict
        The content of the ``stmd`` section.

    Returns
    -------
    validated_options : dict
        A copy of the options with the default values filled in.

    Raises
    ------
    ConfigurationError
        If any option is missing, unknown or invalid.

    """
    return _validate_section('stmd', options, _STMD_SCHEMA)


def validate_replica_exchange_options(options):
    """Validate and normalize the replica exchange options.

    Raises
    ------
    ConfigurationError
        If any option is missing, unknown or invalid.

    """
    return _validate_section('replica_exchange', options, _REPLICA_EXCHANGE_SCHEMA)


def load_script(script):
    """Load and validate a YAML configuration.

    Parameters
    ----------
    script : str or dict
        A path to a YAML file, a YAML string, or the already parsed content.

    Returns
    -------
    stmd_options : dict
        The validated ``stmd`` section.
    replica_exchange_options : dict or None
        The validated ``replica_exchange`` section, or None if absent.

    Raises
    ------
    ConfigurationError
        If the script cannot be parsed or it does not validate.

    """
    if isinstance(script, str):
        if os.path.isfile(script):
            logger.debug('Loading configuration from {}'.format(script))
            with open(script, 'r') as f:
                script = f.read()
        try:
            content = yaml.safe_load(script)
        except yaml.YAMLError as e:
            raise ConfigurationError('Cannot parse the configuration: {}'.format(e))
    else:
        content = script

    if not isinstance(content, dict):
        raise ConfigurationError('The configuration must be a dictionary, got {}'.format(content))
    unknown_sections = set(content) - {'stmd', 'replica_exchange'}
    if len(unknown_sections) > 0:
        raise ConfigurationError('Unknown configuration sections: {}'.format(sorted(unknown_sections)))
    if 'stmd' not in content:
        raise ConfigurationError("The configuration has no 'stmd' section")

    stmd_options = validate_stmd_options(content['stmd'])
    replica_exchange_options = content.get('replica_exchange', None)
    if replica_exchange_options is not None:
        replica_exchange_options = validate_replica_exchange_options(replica_exchange_options)
    return stmd_options, replica_exchange_options
