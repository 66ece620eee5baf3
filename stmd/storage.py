#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
Storage
=======

Checkpointing of the estimator state.

A checkpoint is a flat sequence of ``3N + 13`` numbers: 13 scalars (stage,
f, counters, temperature bounds and flatness window) followed by the
temperature array, the cumulative histogram and the production histogram.
:class:`CheckpointCodec` converts between this record and an
:class:`~stmd.estimator.EstimatorState`.

Two file formats hold the record. The default is a self-describing NetCDF4
file storing the record together with the name of every scalar and the
energy binning. The legacy text format stores one scalar per line followed
by the three arrays, one per line.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import os
import logging

import numpy as np
import netCDF4 as netcdf

from . import mpi
from .utils import STMDError

logger = logging.getLogger(__name__)


# ==============================================================================
# CONSTANTS
# ==============================================================================

# Order of the scalars at the beginning of the record, with the type each
# number is cast to when the record is read.
SCALAR_FIELDS = (
    ('stage', int),
    ('f', float),
    ('n_hist_samples', int),
    ('flat_count', int),
    ('flat_count_old', int),
    ('n_checks', int),
    ('step', int),
    ('n_samples', int),
    ('n_production_samples', int),
    ('low_temperature', float),
    ('high_temperature', float),
    ('ct_min', float),
    ('ct_max', float),
)

N_SCALARS = len(SCALAR_FIELDS)

CHECKPOINT_FORMATS = ('netcdf', 'text')


# ==============================================================================
# EXCEPTIONS
# ==============================================================================

class RestartFormatError(STMDError):
    """The checkpoint is missing or it is too small for the configured binning."""
    pass


# ==============================================================================
# CHECKPOINT CODEC
# ==============================================================================

class CheckpointCodec(object):
    """Convert an estimator state to and from its flat checkpoint record.

    Parameters
    ----------
    n_bins : int
        The number of energy bins.

    Examples
    --------
    >>> from stmd.estimator import EstimatorState
    >>> state = EstimatorState.from_temperatures(0.0, 40.0, 10.0, 300.0, 600.0, 300.0, 0.01)
    >>> codec = CheckpointCodec(state.n_bins)
    >>> record = codec.save(state)
    >>> len(record) == 3*5 + 13
    True

    """

    def __init__(self, n_bins):
        self.n_bins = n_bins

    @property
    def record_size(self):
        return 3*self.n_bins + N_SCALARS

    def save(self, state):
        """Flatten the state into a record.

        Parameters
        ----------
        state : EstimatorState
            The state to serialize.

        Returns
        -------
        record : numpy.ndarray
            The ``3N + 13`` numbers of the checkpoint.

        """
        if state.n_bins != self.n_bins:
            raise ValueError('Cannot save a state with {} bins with a codec for {} '
                             'bins'.format(state.n_bins, self.n_bins))
        histogram = state.histogram
        scalars = [
            state.stage, state.f, state.n_hist_samples, state.flat_count,
            state.flat_count_old, state.n_checks, state.step, state.n_samples,
            state.n_production_samples, histogram.low_temperature,
            histogram.high_temperature, state.flatness_window[0], state.flatness_window[1]
        ]
        return np.concatenate([np.array(scalars, dtype=np.float64),
                               histogram.temperatures,
                               histogram.cumulative_histogram,
                               histogram.production_histogram])

    def load(self, record, state):
        """Restore a state from a record.

        The transient histogram is cleared and df is recomputed from f.

        Parameters
        ----------
        record : sequence of float
            The checkpoint record. Extra trailing numbers are ignored.
        state : EstimatorState
            A state with the same binning, modified in place.

        Returns
        -------
        state : EstimatorState
            The restored state.

        Raises
        ------
        RestartFormatError
            If the record has less than ``3N + 13`` numbers.

        """
        record = np.asarray(record, dtype=np.float64).ravel()
        if len(record) < self.record_size:
            raise RestartFormatError('The checkpoint contains {} numbers, but {} are needed for '
                                     '{} bins'.format(len(record), self.record_size, self.n_bins))
        if len(record) > self.record_size:
            logger.warning('Ignoring {} trailing numbers in the checkpoint'.format(
                len(record) - self.record_size))

        scalars = self.scalars_as_dict(record)
        for name in ['stage', 'f', 'n_hist_samples', 'flat_count', 'flat_count_old',
                     'n_checks', 'step', 'n_samples', 'n_production_samples']:
            setattr(state, name, scalars[name])
        state.histogram.low_temperature = scalars['low_temperature']
        state.histogram.high_temperature = scalars['high_temperature']
        state.flatness_window = (scalars['ct_min'], scalars['ct_max'])
        state.update_df()

        n = self.n_bins
        histogram = state.histogram
        histogram.temperatures[:] = record[N_SCALARS:N_SCALARS+n]
        histogram.cumulative_histogram[:] = record[N_SCALARS+n:N_SCALARS+2*n]
        histogram.production_histogram[:] = record[N_SCALARS+2*n:N_SCALARS+3*n]
        histogram.reset_histogram()
        return state

    @staticmethod
    def scalars_as_dict(record):
        """Return the scalars of a record as a dict, cast to their type."""
        return {name: cast(record[i]) for i, (name, cast) in enumerate(SCALAR_FIELDS)}


# ==============================================================================
# CHECKPOINT FILES
# ==============================================================================

def _infer_format(file_path):
    if os.path.splitext(file_path)[1] in ('.nc', '.nc4'):
        return 'netcdf'
    return 'text'


@mpi.delayed_termination
def write_checkpoint(file_path, state, checkpoint_format=None, metadata=None):
    """Write the state in a checkpoint file.

    The file is first written next to its destination and then moved in place
    so that an interrupted write never corrupts the previous checkpoint.

    Parameters
    ----------
    file_path : str
        Path to the checkpoint.
    state : EstimatorState
        The state to store.
    checkpoint_format : 'netcdf' or 'text', optional
        If None, the format is inferred from the extension (``.nc`` for NetCDF).
    metadata : dict, optional
        Extra global attributes stored in a NetCDF checkpoint.

    """
    if checkpoint_format is None:
        checkpoint_format = _infer_format(file_path)
    if checkpoint_format not in CHECKPOINT_FORMATS:
        raise ValueError('Unknown checkpoint format {}. Supported formats are '
                         '{}'.format(checkpoint_format, CHECKPOINT_FORMATS))

    record = CheckpointCodec(state.n_bins).save(state)
    tmp_file_path = file_path + '.tmp'
    if checkpoint_format == 'netcdf':
        _write_netcdf_record(tmp_file_path, record, state, metadata)
    else:
        _write_text_record(tmp_file_path, record, state.n_bins)
    os.replace(tmp_file_path, file_path)
    logger.debug('Checkpoint of step {} written to {}'.format(state.step, file_path))


def _write_text_record(file_path, record, n_bins):
    with open(file_path, 'w') as f:
        for value, (name, cast) in zip(record[:N_SCALARS], SCALAR_FIELDS):
            f.write('{!r}\n'.format(cast(value)))
        for i in range(3):
            array = record[N_SCALARS+i*n_bins:N_SCALARS+(i+1)*n_bins]
            f.write(' '.join(repr(float(v)) for v in array) + '\n')


def _write_netcdf_record(file_path, record, state, metadata):
    ncfile = netcdf.Dataset(file_path, 'w', version='NETCDF4')
    try:
        ncfile.createDimension('field', len(record))
        ncfile.createDimension('bin', state.n_bins)

        # Set global attributes.
        setattr(ncfile, 'title', 'Statistical temperature estimator checkpoint')
        setattr(ncfile, 'application', 'STMD')
        setattr(ncfile, 'Conventions', 'STMD')
        setattr(ncfile, 'ConventionVersion', '0.1')
        setattr(ncfile, 'n_bins', state.n_bins)
        setattr(ncfile, 'n_scalars', N_SCALARS)
        setattr(ncfile, 'scalar_names', ' '.join(name for name, _ in SCALAR_FIELDS))
        histogram = state.histogram
        setattr(ncfile, 'energy_min', histogram.energy_min)
        setattr(ncfile, 'energy_max', histogram.energy_max)
        setattr(ncfile, 'bin_width', histogram.bin_width)
        setattr(ncfile, 'reference_temperature', state.reference_temperature)
        for key, value in (metadata or {}).items():
            setattr(ncfile, key, value)

        ncvar_record = ncfile.createVariable('record', 'f8', ('field',))
        setattr(ncvar_record, 'long_name', 'record[field] is the flat checkpoint: scalars, '
                                           'then temperatures, cumulative and production '
                                           'histograms.')
        ncvar_record[:] = record

        ncvar_energies = ncfile.createVariable('energies', 'f8', ('bin',))
        setattr(ncvar_energies, 'long_name', 'energies[bin] is the energy of the bin.')
        ncvar_energies[:] = histogram.bin_energies

        # Named copy of the scalars for inspection.
        ncgrp_scalars = ncfile.createGroup('scalars')
        for i, (name, cast) in enumerate(SCALAR_FIELDS):
            ncvar = ncgrp_scalars.createVariable(name, 'i8' if cast is int else 'f8')
            ncvar.assignValue(cast(record[i]))
        ncfile.sync()
    finally:
        ncfile.close()


def read_checkpoint_record(file_path, checkpoint_format=None):
    """Read the flat record stored in a checkpoint file.

    Parameters
    ----------
    file_path : str
        Path to the checkpoint.
    checkpoint_format : 'netcdf' or 'text', optional
        If None, the format is inferred from the extension.

    Returns
    -------
    record : numpy.ndarray
        The numbers stored in the file.
    attributes : dict
        The global attributes of a NetCDF checkpoint, an empty dict for
        text checkpoints.

    Raises
    ------
    RestartFormatError
        If the file does not exist or cannot be parsed.

    """
    if not os.path.isfile(file_path):
        raise RestartFormatError('Restart file {} does not exist'.format(file_path))
    if checkpoint_format is None:
        checkpoint_format = _infer_format(file_path)

    if checkpoint_format == 'netcdf':
        try:
            ncfile = netcdf.Dataset(file_path, 'r')
        except OSError as e:
            raise RestartFormatError('Cannot open restart file {}: {}'.format(file_path, e))
        try:
            if 'record' not in ncfile.variables:
                raise RestartFormatError('Restart file {} has no checkpoint '
                                         'record'.format(file_path))
            record = np.array(ncfile.variables['record'][:], dtype=np.float64)
            attributes = {name: ncfile.getncattr(name) for name in ncfile.ncattrs()}
        finally:
            ncfile.close()
        return record, attributes

    with open(file_path, 'r') as f:
        try:
            record = np.array([float(token) for token in f.read().split()])
        except ValueError as e:
            raise RestartFormatError('Cannot parse restart file {}: {}'.format(file_path, e))
    return record, {}


def load_checkpoint_record(file_path, record, attributes, state):
    """Restore the state from a record read by :func:`read_checkpoint_record`.

    The bin count stored in the attributes of netCDF checkpoints must match
    the configured one. Text checkpoints carry no attributes and are only
    checked for their size.

    Raises
    ------
    RestartFormatError
        If the checkpoint was written with a different number of bins, or
        the record is undersized.

    """
    if 'n_bins' in attributes and int(attributes['n_bins']) != state.n_bins:
        raise RestartFormatError('Restart file {} was written with {} bins, but {} bins are '
                                 'configured'.format(file_path, attributes['n_bins'], state.n_bins))
    return CheckpointCodec(state.n_bins).load(record, state)


def read_checkpoint(file_path, state, checkpoint_format=None):
    """Restore the state from a checkpoint file.

    Parameters
    ----------
    file_path : str
        Path to the checkpoint.
    state : EstimatorState
        A state with the configured binning, modified in place.

    Returns
    -------
    state : EstimatorState
        The restored state.

    Raises
    ------
    RestartFormatError
        If the file is missing, it cannot be read, or it is undersized.

    """
    record, attributes = read_checkpoint_record(file_path, checkpoint_format)
    state = load_checkpoint_record(file_path, record, attributes, state)
    logger.info('Restarted from {} at step {} in stage {} with f = {}'.format(
        file_path, state.step, state.stage, state.f))
    return state
