#!/usr/bin/env python

# =============================================================================
# MODULE DOCSTRING
# =============================================================================

"""
Test the checkpoint codec and files in storage.py.

"""

# =============================================================================
# GLOBAL IMPORTS
# =============================================================================

import os

import numpy as np
import pytest

from stmd.estimator import EstimatorState, TemperatureEstimator
from stmd.stages import StageController
from stmd.storage import *


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def create_state(initial_df=0.01):
    return EstimatorState.from_temperatures(0.0, 40.0, 10.0, 300.0, 600.0, 300.0, initial_df)


def create_evolved_state(policy='sqrt', n_steps=300):
    """A state that went through a few stages."""
    state = create_state()
    estimator = TemperatureEstimator(state)
    controller = StageController(estimator, policy, dig_interval=10,
                                 reduction_interval=20, final_df=0.001)
    random_state = np.random.RandomState(1)
    for step in range(1, n_steps + 1):
        estimator.record(step, random_state.uniform(5.0, 34.0))
        controller.advance(step)
    return state


# =============================================================================
# TEST FUNCTIONS
# =============================================================================

def test_record_layout():
    """The record holds the 13 scalars followed by the three arrays."""
    state = create_evolved_state()
    codec = CheckpointCodec(state.n_bins)
    record = codec.save(state)

    assert len(record) == codec.record_size == 3*5 + 13
    assert record[0] == state.stage
    assert record[1] == state.f
    assert record[6] == state.step
    assert record[7] == state.n_samples
    assert record[9] == state.histogram.low_temperature
    assert record[10] == state.histogram.high_temperature
    assert tuple(record[11:13]) == state.flatness_window
    assert np.array_equal(record[13:18], state.temperatures)
    assert np.array_equal(record[18:23], state.histogram.cumulative_histogram)
    assert np.array_equal(record[23:28], state.histogram.production_histogram)

    scalars = CheckpointCodec.scalars_as_dict(record)
    assert scalars['stage'] == state.stage
    assert isinstance(scalars['n_samples'], int)


@pytest.mark.parametrize('policy', ['sqrt', 'constant-df-decay'])
def test_codec_restores_state(policy):
    """Loading a saved record restores the state and clears the transient histogram."""
    state = create_evolved_state(policy)
    codec = CheckpointCodec(state.n_bins)
    restored = codec.load(codec.save(state), create_state())

    assert restored == state
    assert restored.df == pytest.approx(state.df)
    assert np.all(restored.histogram.histogram == 0)


def test_codec_record_size():
    state = create_state()
    codec = CheckpointCodec(state.n_bins)
    record = codec.save(state)

    with pytest.raises(RestartFormatError):
        codec.load(record[:-1], create_state())

    # Trailing numbers are ignored.
    restored = codec.load(np.concatenate([record, [1.0, 2.0]]), create_state())
    assert restored == state

    with pytest.raises(ValueError):
        CheckpointCodec(7).save(state)


@pytest.mark.parametrize('checkpoint_format,file_name', [
    ('netcdf', 'oREST.0.nc'),
    ('text', 'oREST.0.d'),
])
def test_checkpoint_file(tmp_path, checkpoint_format, file_name):
    """A state written to file is read back identical."""
    file_path = str(tmp_path / file_name)
    state = create_evolved_state()
    write_checkpoint(file_path, state, checkpoint_format, metadata={'walker_id': 0})
    assert os.path.isfile(file_path)
    assert not os.path.exists(file_path + '.tmp')

    restored = read_checkpoint(file_path, create_state())
    assert restored == state

    record, attributes = read_checkpoint_record(file_path)
    assert len(record) == 28
    if checkpoint_format == 'netcdf':
        assert attributes['n_bins'] == 5
        assert attributes['walker_id'] == 0
        assert attributes['bin_width'] == 10.0
    else:
        assert attributes == {}


def test_text_checkpoint_layout(tmp_path):
    """The text checkpoint has one scalar per line and one array per line."""
    file_path = str(tmp_path / 'oREST.0.d')
    state = create_state()
    write_checkpoint(file_path, state)
    with open(file_path, 'r') as f:
        lines = f.read().splitlines()
    assert len(lines) == 13 + 3
    assert lines[0] == '1'
    assert float(lines[1]) == state.f
    assert len(lines[13].split()) == 5


def test_checkpoint_overwrite(tmp_path):
    file_path = str(tmp_path / 'oREST.0.nc')
    state = create_state()
    write_checkpoint(file_path, state)
    state.step = 10
    write_checkpoint(file_path, state)
    assert read_checkpoint(file_path, create_state()).step == 10


def test_missing_checkpoint(tmp_path):
    with pytest.raises(RestartFormatError):
        read_checkpoint(str(tmp_path / 'oREST.0.nc'), create_state())


def test_undersized_checkpoint(tmp_path):
    file_path = str(tmp_path / 'oREST.0.d')
    with open(file_path, 'w') as f:
        f.write('1\n1.2\n3\n')
    with pytest.raises(RestartFormatError):
        read_checkpoint(file_path, create_state())


def test_corrupted_checkpoint(tmp_path):
    file_path = str(tmp_path / 'oREST.0.d')
    with open(file_path, 'w') as f:
        f.write('1\nnot-a-number\n')
    with pytest.raises(RestartFormatError):
        read_checkpoint(file_path, create_state())


def test_binning_mismatch(tmp_path):
    file_path = str(tmp_path / 'oREST.0.nc')
    write_checkpoint(file_path, create_state())
    other_state = EstimatorState.from_temperatures(0.0, 50.0, 10.0, 300.0, 600.0, 300.0, 0.01)
    with pytest.raises(RestartFormatError):
        read_checkpoint(file_path, other_state)
