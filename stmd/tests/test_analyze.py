#!/usr/bin/env python

# =============================================================================
# MODULE DOCSTRING
# =============================================================================

"""
Test the checkpoint analysis in analyze.py.

"""

# =============================================================================
# GLOBAL IMPORTS
# =============================================================================

import numpy as np
import pytest

from stmd import analyze
from stmd.estimator import EstimatorState
from stmd.storage import write_checkpoint, RestartFormatError


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def write_test_checkpoint(file_path):
    state = EstimatorState.from_temperatures(0.0, 40.0, 10.0, 300.0, 600.0, 300.0, 0.01)
    state.histogram.temperatures[:] = [1.0, 1.0, 1.5, 2.0, 2.0]
    state.histogram.cumulative_histogram[:] = [0, 10, 20, 30, 0]
    state.step = 100
    state.n_samples = 100
    write_checkpoint(file_path, state)
    return state


# =============================================================================
# TEST FUNCTIONS
# =============================================================================

def test_compute_entropy():
    """The entropy integrates 1/T with the trapezoidal rule."""
    entropy = analyze.compute_entropy([1.0, 1.0, 2.0], bin_width=2.0)
    assert np.allclose(entropy, [0.0, 2.0, 3.5])

    # Constant temperature gives a linear entropy.
    entropy = analyze.compute_entropy([2.0] * 4, bin_width=10.0, reference_temperature=300.0)
    assert np.allclose(np.diff(entropy), 10.0 / 600.0)


def test_infer_n_bins():
    assert analyze.infer_n_bins(np.zeros(28)) == 5
    with pytest.raises(RestartFormatError):
        analyze.infer_n_bins(np.zeros(20))
    with pytest.raises(RestartFormatError):
        analyze.infer_n_bins(np.zeros(29))


def test_netcdf_summary(tmp_path):
    file_path = str(tmp_path / 'oREST.0.nc')
    state = write_test_checkpoint(file_path)
    summary = analyze.read_checkpoint_summary(file_path)

    assert summary['n_bins'] == 5
    assert summary['stage'] == 1
    assert summary['step'] == 100
    assert summary['f'] == state.f
    assert np.array_equal(summary['temperatures'], [1.0, 1.0, 1.5, 2.0, 2.0])
    assert np.array_equal(summary['cumulative_histogram'], [0, 10, 20, 30, 0])
    assert np.allclose(summary['energies'], [0.0, 10.0, 20.0, 30.0, 40.0])
    assert len(summary['entropy']) == 5
    assert summary['entropy'][0] == 0.0


def test_text_summary(tmp_path):
    file_path = str(tmp_path / 'oREST.0.d')
    write_test_checkpoint(file_path)
    summary = analyze.read_checkpoint_summary(file_path)
    assert summary['n_bins'] == 5
    assert 'energies' not in summary
    assert 'entropy' not in summary


def test_format(tmp_path):
    file_path = str(tmp_path / 'oREST.0.nc')
    write_test_checkpoint(file_path)
    summary = analyze.read_checkpoint_summary(file_path)

    status = analyze.format_status(summary, header='walker 0')
    assert status.startswith('walker 0\nStage 1 (dig) at step 100')

    table = analyze.format_bin_table(summary).splitlines()
    assert len(table) == 6
    assert table[0] == '# bin energy temperature cumulative production entropy'
    assert table[3].split()[:5] == ['2', '20.000000', '450.000000', '20', '0']


def test_print_status(tmp_path, capsys):
    file_path = str(tmp_path / 'oREST.0.nc')
    write_test_checkpoint(file_path)
    analyze.print_status([file_path])
    assert 'Stage 1 (dig)' in capsys.readouterr().out
