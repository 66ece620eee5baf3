#!/usr/bin/env python

# =============================================================================
# MODULE DOCSTRING
# =============================================================================

"""
Test the diagnostic files in reports.py.

"""

# =============================================================================
# GLOBAL IMPORTS
# =============================================================================

import os

from stmd.estimator import EstimatorState
from stmd.reports import DiagnosticsWriter


# =============================================================================
# TEST FUNCTIONS
# =============================================================================

def read_blocks(file_path):
    with open(file_path, 'r') as f:
        content = f.read()
    return [block.splitlines() for block in content.split('\n\n\n') if block]


def test_diagnostics_writer(tmp_path):
    output_directory = os.path.join(str(tmp_path), 'output')
    writer = DiagnosticsWriter(output_directory, walker_id=2)
    assert sorted(os.listdir(output_directory)) == ['WH.2.d', 'WHP.2.d', 'WT.2.d']

    state = EstimatorState.from_temperatures(0.0, 40.0, 10.0, 300.0, 600.0, 300.0, 0.01)
    state.histogram.add_sample(2)
    state.n_samples = state.n_hist_samples = 1
    writer.write(state)
    writer.write(state)

    blocks = read_blocks(writer.file_paths['WT'])
    assert len(blocks) == 2
    assert blocks[0][2] == '2 20.000000 600.000000 2.000000 1'
    blocks = read_blocks(writer.file_paths['WH'])
    assert blocks[0][2].split()[:4] == ['2', '20.000000', '1', '1']
    assert read_blocks(writer.file_paths['WHP']) == []

    # The production histogram is written from the Refine stage.
    state.stage = 3
    writer.write(state)
    blocks = read_blocks(writer.file_paths['WHP'])
    assert len(blocks) == 1
    assert len(blocks[0]) == 5


def test_diagnostics_append(tmp_path):
    state = EstimatorState.from_temperatures(0.0, 40.0, 10.0, 300.0, 600.0, 300.0, 0.01)
    DiagnosticsWriter(str(tmp_path)).write(state)
    writer = DiagnosticsWriter(str(tmp_path), append=True)
    writer.write(state)
    assert len(read_blocks(writer.file_paths['WT'])) == 2

    writer = DiagnosticsWriter(str(tmp_path))
    assert os.path.getsize(writer.file_paths['WT']) == 0
