#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
Reports
=======

Per-bin diagnostic dumps of a walker.

Three text files are written in the output directory, each made of blocks
of one line per bin separated by two blank lines:

``WT.<walker>.d``
    ``bin energy temperature reduced_temperature n_samples``
``WH.<walker>.d``
    ``bin energy histogram cumulative_histogram reduced_temperature n_hist_samples n_samples f``
``WHP.<walker>.d``
    ``bin energy histogram production_histogram cumulative_histogram reduced_temperature
    n_hist_samples n_production_samples f``, only in the Refine and Production stages.

These files are not needed to restart a walker.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import os
import logging

logger = logging.getLogger(__name__)


# ==============================================================================
# DIAGNOSTICS WRITER
# ==============================================================================

class DiagnosticsWriter(object):
    """Append per-bin tables of the estimator state to text files.

    Parameters
    ----------
    output_directory : str
        The directory where the files are written. It is created if needed.
    walker_id : int, optional
        The index of the walker used in the file names (default is 0).
    append : bool, optional
        If False, the existing files are truncated (default is False).

    """

    def __init__(self, output_directory, walker_id=0, append=False):
        self.output_directory = output_directory
        self.walker_id = walker_id
        os.makedirs(output_directory, exist_ok=True)
        if not append:
            for file_path in self.file_paths.values():
                open(file_path, 'w').close()

    @property
    def file_paths(self):
        """Dict mapping each table to its file path."""
        return {prefix: os.path.join(self.output_directory, '{}.{}.d'.format(prefix, self.walker_id))
                for prefix in ['WT', 'WH', 'WHP']}

    def _append_block(self, prefix, lines):
        with open(self.file_paths[prefix], 'a') as f:
            f.writelines(lines)
            f.write('\n\n')

    def write_temperatures(self, state):
        histogram = state.histogram
        energies = histogram.bin_energies
        st = state.reference_temperature
        lines = ['{} {:f} {:f} {:f} {}\n'.format(i, energies[i], y*st, y, state.n_samples)
                 for i, y in enumerate(histogram.temperatures)]
        self._append_block('WT', lines)

    def write_histogram(self, state):
        histogram = state.histogram
        energies = histogram.bin_energies
        lines = ['{} {:f} {:d} {:d} {:f} {} {} {:f}\n'.format(
                     i, energies[i], int(histogram.histogram[i]),
                     int(histogram.cumulative_histogram[i]), histogram.temperatures[i],
                     state.n_hist_samples, state.n_samples, state.f)
                 for i in range(histogram.n_bins)]
        self._append_block('WH', lines)

    def write_production_histogram(self, state):
        histogram = state.histogram
        energies = histogram.bin_energies
        lines = ['{} {:f} {:d} {:d} {:d} {:f} {} {} {:f}\n'.format(
                     i, energies[i], int(histogram.histogram[i]),
                     int(histogram.production_histogram[i]),
                     int(histogram.cumulative_histogram[i]), histogram.temperatures[i],
                     state.n_hist_samples, state.n_production_samples, state.f)
                 for i in range(histogram.n_bins)]
        self._append_block('WHP', lines)

    def write(self, state):
        """Append the tables appropriate for the current stage."""
        self.write_temperatures(state)
        self.write_histogram(state)
        if state.stage >= 3:
            self.write_production_histogram(state)
        logger.debug('Diagnostics of step {} written in {}'.format(state.step, self.output_directory))
