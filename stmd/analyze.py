#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
Analyze
=======

Offline analysis of STMD checkpoints.

The statistical temperature is the inverse derivative of the microcanonical
entropy, ``1/T(E) = dS/dE``. Integrating the learned temperature curve gives
the entropy (the logarithm of the density of states) up to a constant, from
which canonical averages at any temperature covered by the run follow.

"""

# =============================================================================================
# MODULE IMPORTS
# =============================================================================================

import logging

import numpy as np

from . import mpi, storage
from .stages import STAGE_NAMES

logger = logging.getLogger(__name__)


# =============================================================================================
# MODULE FUNCTIONS
# =============================================================================================

def infer_n_bins(record):
    """Number of bins of a checkpoint record.

    Raises
    ------
    RestartFormatError
        If the record length is not ``3N + 13`` for some N >= 3.

    """
    n_fields = len(record) - storage.N_SCALARS
    if n_fields < 9 or n_fields % 3 != 0:
        raise storage.RestartFormatError('A checkpoint record with {} numbers does not '
                                         'match any binning'.format(len(record)))
    return n_fields // 3


def compute_entropy(temperatures, bin_width, reference_temperature=1.0):
    """Integrate the inverse statistical temperature over the energy bins.

    The integral uses the trapezoidal rule and is zero at the lowest bin.

    Parameters
    ----------
    temperatures : array-like
        The dimensionless statistical temperature of each bin.
    bin_width : float
        The width of an energy bin.
    reference_temperature : float, optional
        The temperature making ``temperatures`` dimensionless.

    Returns
    -------
    entropy : numpy.ndarray
        The entropy at the center of each bin, in units of the Boltzmann
        constant when energies and temperatures share the same units.

    Examples
    --------
    >>> compute_entropy([1.0, 1.0, 2.0], bin_width=2.0)
    array([0. , 2. , 3.5])

    """
    inverse_temperatures = 1.0 / (np.asarray(temperatures, dtype=np.float64) * reference_temperature)
    increments = 0.5 * (inverse_temperatures[:-1] + inverse_temperatures[1:]) * bin_width
    return np.concatenate([[0.0], np.cumsum(increments)])


def read_checkpoint_summary(file_path, checkpoint_format=None):
    """Read a checkpoint into a dict of scalars and per-bin arrays.

    Parameters
    ----------
    file_path : str
        Path to a NetCDF or text checkpoint.

    Returns
    -------
    summary : dict
        The scalars of the record, the arrays ``temperatures``,
        ``cumulative_histogram`` and ``production_histogram``, ``n_bins`` and,
        for NetCDF checkpoints, the binning and the ``entropy``.

    """
    record, attributes = storage.read_checkpoint_record(file_path, checkpoint_format)
    if 'n_bins' in attributes:
        n_bins = int(attributes['n_bins'])
    else:
        n_bins = infer_n_bins(record)
    if len(record) < 3*n_bins + storage.N_SCALARS:
        raise storage.RestartFormatError('Checkpoint {} is undersized'.format(file_path))

    summary = storage.CheckpointCodec.scalars_as_dict(record)
    summary['n_bins'] = n_bins
    offset = storage.N_SCALARS
    for name in ['temperatures', 'cumulative_histogram', 'production_histogram']:
        summary[name] = np.array(record[offset:offset+n_bins])
        offset += n_bins

    for name in ['energy_min', 'energy_max', 'bin_width', 'reference_temperature', 'walker_id']:
        if name in attributes:
            summary[name] = attributes[name]
    if 'bin_width' in summary:
        summary['energies'] = summary['energy_min'] + np.arange(n_bins) * summary['bin_width']
        summary['entropy'] = compute_entropy(summary['temperatures'], summary['bin_width'],
                                             summary.get('reference_temperature', 1.0))
    return summary


def format_status(summary, header=None):
    """Return a short human-readable description of a checkpoint summary."""
    lines = []
    if header is not None:
        lines.append(header)
    stage = summary['stage']
    lines.append('Stage {} ({}) at step {}, {} samples'.format(
        stage, STAGE_NAMES.get(stage, 'unknown'), summary['step'], summary['n_samples']))
    lines.append('f = {:.12f}, {} bins'.format(summary['f'], summary['n_bins']))
    lines.append('flat histograms: {}, checks since last reduction: {}'.format(
        summary['flat_count'] - 1, summary['n_checks']))
    if stage >= 3:
        lines.append('production samples: {}'.format(summary['n_production_samples']))
    return '\n'.join(lines)


def format_bin_table(summary):
    """Return the per-bin table of a checkpoint summary as text."""
    has_energies = 'energies' in summary
    columns = ['bin']
    if has_energies:
        columns += ['energy']
    columns += ['temperature', 'cumulative', 'production']
    if has_energies:
        columns += ['entropy']

    lines = ['# ' + ' '.join(columns)]
    reference_temperature = summary.get('reference_temperature', 1.0)
    for i in range(summary['n_bins']):
        row = ['{}'.format(i)]
        if has_energies:
            row.append('{:.6f}'.format(summary['energies'][i]))
        row.append('{:.6f}'.format(summary['temperatures'][i] * reference_temperature))
        row.append('{:d}'.format(int(summary['cumulative_histogram'][i])))
        row.append('{:d}'.format(int(summary['production_histogram'][i])))
        if has_energies:
            row.append('{:.6f}'.format(summary['entropy'][i]))
        lines.append(' '.join(row))
    return '\n'.join(lines) + '\n'


@mpi.on_single_node(0)
def print_status(file_paths):
    """Print the status of the given checkpoints on the root node."""
    for file_path in file_paths:
        summary = read_checkpoint_summary(file_path)
        print(format_status(summary, header='{}:'.format(file_path)))
        print('')
