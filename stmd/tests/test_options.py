#!/usr/bin/env python

# =============================================================================
# MODULE DOCSTRING
# =============================================================================

"""
Test the validation of the configuration in options.py.

"""

# =============================================================================
# GLOBAL IMPORTS
# =============================================================================

import textwrap

import pytest
import yaml

from stmd.options import *
from stmd.utils import ConfigurationError


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def get_stmd_section(**kwargs):
    section = dict(checkpoint_interval=1000, reduction_policy='flatness-gated', initial_df=0.01,
                   final_df=0.0001, low_temperature=300.0, high_temperature=800.0,
                   energy_min=-12000.0, energy_max=-6000.0, bin_width=20.0, dig_interval=100,
                   reduction_interval=5000, reference_temperature=300.0)
    section.update(kwargs)
    return section


def get_replica_exchange_section(**kwargs):
    section = dict(exchange_interval=500, n_trials=2000, swap_seed=0, boltzmann_seed=2048)
    section.update(kwargs)
    return section


# =============================================================================
# TEST FUNCTIONS
# =============================================================================

def test_defaults():
    """Optional walker options are filled in."""
    options = validate_stmd_options(get_stmd_section())
    assert options['restart'] is False
    assert options['output_directory'] == '.'
    assert options['checkpoint_format'] == 'netcdf'
    assert options['write_diagnostics'] is True

    options = validate_replica_exchange_options(get_replica_exchange_section())
    assert options['fix_id'] == 'stmd'
    assert options['exchange_during_dig'] is False
    assert options['set_temperatures'] is None


def test_null_set_temperatures():
    """An explicit null leaves the set temperatures to the walkers."""
    options = validate_replica_exchange_options(get_replica_exchange_section(set_temperatures=None))
    assert options['set_temperatures'] is None
    options = validate_replica_exchange_options(get_replica_exchange_section(set_temperatures=[300, 300]))
    assert options['set_temperatures'] == [300, 300]


def test_coercion():
    """Integers are accepted as floats, and 'yes'/'no' strings as booleans."""
    options = validate_stmd_options(get_stmd_section(low_temperature=300, restart='yes',
                                                     write_diagnostics='no'))
    assert isinstance(options['low_temperature'], float)
    assert options['restart'] is True
    assert options['write_diagnostics'] is False


@pytest.mark.parametrize('policy', ['none', 'flatness-gated', 'hchk', 'sqrt', 'constant-subtract',
                                    'constant_f', 'constant-df-decay', 'constant_df'])
def test_reduction_policies(policy):
    options = validate_stmd_options(get_stmd_section(reduction_policy=policy))
    assert options['reduction_policy'] == policy


@pytest.mark.parametrize('invalid', [
    {'reduction_policy': 'linear'},
    {'initial_df': 1.5},
    {'initial_df': 0.0},
    {'final_df': 1e-6},
    {'low_temperature': -1.0},
    {'high_temperature': 200.0},
    {'energy_max': -13000.0},
    {'bin_width': 0.0},
    {'bin_width': 5000.0},
    {'checkpoint_interval': 0},
    {'dig_interval': 1.5},
    {'checkpoint_format': 'hdf5'},
    {'unknown_option': 1},
])
def test_invalid_stmd_options(invalid):
    with pytest.raises(ConfigurationError):
        validate_stmd_options(get_stmd_section(**invalid))


def test_missing_stmd_option():
    section = get_stmd_section()
    del section['bin_width']
    with pytest.raises(ConfigurationError, match='bin_width'):
        validate_stmd_options(section)


@pytest.mark.parametrize('invalid', [
    {'n_trials': 0},
    {'swap_seed': -1},
    {'boltzmann_seed': 0},
    {'set_temperatures': [300.0, -1.0]},
    {'exchange_interval': 'often'},
])
def test_invalid_replica_exchange_options(invalid):
    with pytest.raises(ConfigurationError):
        validate_replica_exchange_options(get_replica_exchange_section(**invalid))


def test_load_script(tmp_path):
    """Scripts can be given as a file, a YAML string or a dict."""
    script = {'stmd': get_stmd_section(), 'replica_exchange': get_replica_exchange_section()}
    stmd_options, replica_exchange_options = load_script(script)
    assert stmd_options['bin_width'] == 20.0
    assert replica_exchange_options['n_trials'] == 2000

    yaml_content = yaml.dump({'stmd': get_stmd_section()})
    stmd_options, replica_exchange_options = load_script(yaml_content)
    assert stmd_options['dig_interval'] == 100
    assert replica_exchange_options is None

    file_path = tmp_path / 'stmd.yaml'
    file_path.write_text(yaml_content)
    stmd_options, _ = load_script(str(file_path))
    assert stmd_options['reduction_interval'] == 5000


def test_invalid_script():
    with pytest.raises(ConfigurationError, match='no \'stmd\' section'):
        load_script({'replica_exchange': get_replica_exchange_section()})
    with pytest.raises(ConfigurationError, match='Unknown configuration sections'):
        load_script({'stmd': get_stmd_section(), 'experiments': {}})
    with pytest.raises(ConfigurationError):
        load_script('just a string')
    with pytest.raises(ConfigurationError):
        load_script(textwrap.dedent("""
        stmd:
            bin_width: [20.0
        """))
    with pytest.raises(ConfigurationError):
        load_script({'stmd': 'not a dict'})
