#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
STMD
====

Walker driver of statistical temperature molecular dynamics.

The :class:`STMD` object is what a simulation engine talks to. Every
force evaluation the engine passes the step index and the potential energy
to :meth:`STMD.post_force` and multiplies the forces by the returned scaling
factor. At the end of every step :meth:`STMD.end_of_step` writes the
checkpoint and the diagnostics on the configured period.

When a walker runs on several processes, only the root of the walker
communicator updates the estimator. The scaling factor, or the exception
raised while computing it, is broadcast to the other processes.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import os
import logging

import numpy as np

from . import mpi, options, storage
from .estimator import EstimatorState, TemperatureEstimator
from .reports import DiagnosticsWriter
from .stages import StageController, STAGE_NAMES
from .utils import nearest_integer

logger = logging.getLogger(__name__)


# ==============================================================================
# STMD WALKER
# ==============================================================================

class STMD(object):
    """A statistical temperature molecular dynamics walker.

    Parameters
    ----------
    checkpoint_interval : int
        Number of steps between two checkpoints and diagnostic dumps.
    reduction_policy : str
        Name of the f-reduction policy: 'none', 'flatness-gated', 'sqrt',
        'constant-subtract' or 'constant-df-decay'.
    initial_df : float
        Initial df. Must not exceed 1.
    final_df : float
        The df tolerance ending the Flatten stage. Must be at least 1e-5.
    low_temperature, high_temperature : float
        Bounds of the statistical temperature.
    energy_min, energy_max : float
        The sampled energy range.
    bin_width : float
        Width of an energy bin.
    dig_interval : int
        Number of steps between two digs in the Dig stage.
    reduction_interval : int
        Number of steps between two reductions of f.
    reference_temperature : float
        Kinetic temperature of the thermostat.
    restart : bool, optional
        If True, the state is read from the checkpoint in ``output_directory``.
    output_directory : str, optional
        Where the checkpoint and the diagnostics are written.
    checkpoint_format : 'netcdf' or 'text', optional
        Format of the checkpoint file (default is 'netcdf').
    write_diagnostics : bool, optional
        If False, the per-bin diagnostic files are not written.
    walker_id : int, optional
        Index of the walker, used in the file names (default is 0).
    mpicomm : mpi4py communicator, optional
        The communicator of the processes of this walker. If None, the
        walker runs on a single process.
    broadcast : callable, optional
        ``broadcast(obj)`` sends ``obj`` from the root of the walker to all
        its processes and returns it. By default this is built from
        ``mpicomm``.

    Attributes
    ----------
    state : EstimatorState
        The estimator state.
    estimator : TemperatureEstimator
    controller : StageController

    Examples
    --------
    >>> walker = STMD(checkpoint_interval=1000, reduction_policy='sqrt', initial_df=0.01,
    ...               final_df=0.0001, low_temperature=300.0, high_temperature=600.0,
    ...               energy_min=0.0, energy_max=40.0, bin_width=10.0, dig_interval=100,
    ...               reduction_interval=50, reference_temperature=300.0,
    ...               write_diagnostics=False)
    >>> gamma = walker.post_force(1, 20.0)
    >>> walker.stage, walker.last_bin, gamma
    (1, 2, 0.5)

    """

    CHECKPOINT_EXTENSIONS = {'netcdf': 'nc', 'text': 'd'}

    def __init__(self, checkpoint_interval, reduction_policy, initial_df, final_df,
                 low_temperature, high_temperature, energy_min, energy_max, bin_width,
                 dig_interval, reduction_interval, reference_temperature, restart=False,
                 output_directory='.', checkpoint_format='netcdf', write_diagnostics=True,
                 walker_id=0, mpicomm=None, broadcast=None):
        self.options = options.validate_stmd_options(dict(
            checkpoint_interval=checkpoint_interval, reduction_policy=reduction_policy,
            initial_df=initial_df, final_df=final_df, low_temperature=low_temperature,
            high_temperature=high_temperature, energy_min=energy_min, energy_max=energy_max,
            bin_width=bin_width, dig_interval=dig_interval, reduction_interval=reduction_interval,
            reference_temperature=reference_temperature, restart=restart,
            output_directory=output_directory, checkpoint_format=checkpoint_format,
            write_diagnostics=write_diagnostics
        ))
        opts = self.options
        self.walker_id = walker_id
        self.checkpoint_interval = opts['checkpoint_interval']
        self.output_directory = opts['output_directory']
        self.checkpoint_format = opts['checkpoint_format']

        self.mpicomm = mpicomm
        if broadcast is None:
            broadcast = mpi.make_broadcast(mpicomm)
        self._broadcast = broadcast
        self.is_root = mpicomm is None or mpicomm.rank == 0
        if mpicomm is not None:
            self._node_name = 'Walker {} node {}/{}'.format(walker_id, mpicomm.rank+1, mpicomm.size)
        else:
            self._node_name = 'Walker {}'.format(walker_id)

        self.state = EstimatorState.from_temperatures(
            opts['energy_min'], opts['energy_max'], opts['bin_width'], opts['low_temperature'],
            opts['high_temperature'], opts['reference_temperature'], opts['initial_df'])
        self.estimator = TemperatureEstimator(self.state)
        self.controller = StageController(self.estimator, opts['reduction_policy'],
                                          opts['dig_interval'], opts['reduction_interval'],
                                          opts['final_df'])

        if opts['restart']:
            self._restart()

        self.diagnostics = None
        if self.is_root and opts['write_diagnostics']:
            self.diagnostics = DiagnosticsWriter(self.output_directory, walker_id,
                                                 append=opts['restart'])

        if self.is_root:
            logger.info('STMD walker {}: stage {} ({}), {} bins of width {}'.format(
                walker_id, self.state.stage, STAGE_NAMES[self.state.stage],
                self.state.n_bins, self.bin_width))
            logger.info('    energy range [{}, {}], f = {:.10f}, df = {:.10g}'.format(
                opts['energy_min'], opts['energy_max'], self.state.f, self.state.df))
            logger.info('    f tolerances: refine {:.10f}, production {:.10f}'.format(
                self.controller.coarse_threshold, self.controller.fine_threshold))

    @classmethod
    def from_options(cls, stmd_options, **kwargs):
        """Create a walker from a dict of options (e.g. the ``stmd`` section of a script)."""
        all_kwargs = dict(stmd_options)
        all_kwargs.update(kwargs)
        return cls(**all_kwargs)

    @classmethod
    def from_script(cls, script, **kwargs):
        """Create a walker from a YAML script.

        Parameters
        ----------
        script : str or dict
            Path to a YAML file, YAML string or parsed content.
        **kwargs
            Other parameters of the constructor (e.g. ``walker_id`` or ``mpicomm``).

        """
        stmd_options, _ = options.load_script(script)
        return cls.from_options(stmd_options, **kwargs)

    # -------------------------------------------------------------------------
    # Checkpoint
    # -------------------------------------------------------------------------

    @property
    def checkpoint_path(self):
        """Path of the checkpoint file of this walker."""
        extension = self.CHECKPOINT_EXTENSIONS[self.checkpoint_format]
        return os.path.join(self.output_directory, 'oREST.{}.{}'.format(self.walker_id, extension))

    def _restart(self):
        # Only the root reads the file, everyone loads the same record.
        record, attributes = mpi.broadcast_from_root(
            lambda: storage.read_checkpoint_record(self.checkpoint_path, self.checkpoint_format),
            is_root=self.is_root, broadcast=self._broadcast, node_name=self._node_name)
        storage.load_checkpoint_record(self.checkpoint_path, record, attributes, self.state)
        logger.info('Walker {} restarted from {} at step {}'.format(
            self.walker_id, self.checkpoint_path, self.state.step))

    def write_checkpoint(self):
        """Write the checkpoint of the current state.

        The file is written by the root of the walker only, and any error is
        raised on every process of the walker.

        """
        def _write():
            storage.write_checkpoint(self.checkpoint_path, self.state, self.checkpoint_format,
                                     metadata={'walker_id': self.walker_id})
        mpi.broadcast_from_root(_write, is_root=self.is_root, broadcast=self._broadcast,
                                node_name=self._node_name)

    def write_diagnostics(self):
        if self.diagnostics is not None:
            self.diagnostics.write(self.state)

    # -------------------------------------------------------------------------
    # Host engine interface
    # -------------------------------------------------------------------------

    def _update(self, step, potential_energy):
        gamma = self.estimator.record(step, potential_energy)
        self.controller.advance(step)
        return gamma

    def post_force(self, step, potential_energy):
        """Update the estimator with the energy of this step.

        Parameters
        ----------
        step : int
            The host step index.
        potential_energy : float
            The potential energy of the configuration.

        Returns
        -------
        gamma : float
            The factor multiplying the forces of the group.

        Raises
        ------
        SamplingRangeError
            If the energy is outside the sampled range.
        ConvergenceError
            If the reduction of f drove it to 1.

        """
        gamma = mpi.broadcast_from_root(self._update, step, potential_energy,
                                        is_root=self.is_root, broadcast=self._broadcast,
                                        node_name=self._node_name)
        if not self.is_root:
            self.state.step = step
            self.state.gamma = gamma
        return gamma

    def scale_forces(self, forces, group_mask=None):
        """Multiply the forces by the last scaling factor in place.

        Parameters
        ----------
        forces : numpy.ndarray
            The ``(n_atoms, 3)`` array of forces.
        group_mask : numpy.ndarray of bool, optional
            If given, only the forces of the atoms for which the mask is True
            are scaled.

        Returns
        -------
        forces : numpy.ndarray
            The scaled forces (same object).

        """
        if group_mask is None:
            forces *= self.state.gamma
        else:
            forces[np.asarray(group_mask, dtype=bool)] *= self.state.gamma
        return forces

    def end_of_step(self, step):
        """Write checkpoint and diagnostics if ``step`` is on the checkpoint period."""
        if step % self.checkpoint_interval != 0:
            return
        self.write_checkpoint()
        if self.is_root:
            self.write_diagnostics()

    # -------------------------------------------------------------------------
    # Read-only accessors
    # -------------------------------------------------------------------------

    @property
    def stage(self):
        return self.state.stage

    @property
    def n_bins(self):
        return self.state.n_bins

    @property
    def bin_min(self):
        return self.state.histogram.bin_min

    @property
    def bin_max(self):
        return self.state.histogram.bin_max

    @property
    def last_bin(self):
        return self.state.last_bin

    @property
    def bin_width(self):
        return self.state.histogram.bin_width

    @property
    def f(self):
        return self.state.f

    @property
    def df(self):
        return self.state.df

    @property
    def gamma(self):
        return self.state.gamma

    @property
    def reference_temperature(self):
        return self.state.reference_temperature

    @property
    def reduced_temperature(self):
        """The dimensionless statistical temperature at the last sampled energy."""
        return self.state.temperature

    @property
    def temperature(self):
        """The statistical temperature at the last sampled energy."""
        return self.state.temperature * self.state.reference_temperature

    @property
    def temperatures(self):
        return self.state.histogram.temperatures

    @property
    def histogram(self):
        return self.state.histogram.histogram

    @property
    def cumulative_histogram(self):
        return self.state.histogram.cumulative_histogram

    @property
    def production_histogram(self):
        return self.state.histogram.production_histogram

    @property
    def bin_energies(self):
        return self.state.histogram.bin_energies

    def compute_scalar(self):
        """Return the statistical temperature at the last sampled energy."""
        return self.temperature

    def compute_vector(self, i):
        """Return a global quantity of the walker.

        Parameters
        ----------
        i : int
            0: stage, 1: number of bins, 2: lowest bin index, 3: highest bin
            index, 4: last sampled bin, 5: bin width, 6: df, 7: scaling factor.

        """
        vector = [self.stage, self.n_bins, self.bin_min, self.bin_max,
                  self.last_bin, self.bin_width, self.df, self.gamma]
        try:
            value = vector[i]
        except IndexError:
            raise IndexError('compute_vector index must be between 0 and {}, '
                             'got {}'.format(len(vector) - 1, i))
        return float(value) if value is not None else float('nan')

    def compute_array(self, i, j):
        """Return a per-bin quantity.

        Parameters
        ----------
        i : int
            0: bin energy, 1: reduced temperature, 2: transient histogram,
            3: production histogram.
        j : int
            The bin index.

        """
        arrays = [self.bin_energies, self.temperatures, self.histogram, self.production_histogram]
        if not 0 <= i < len(arrays):
            raise IndexError('compute_array index must be between 0 and {}, '
                             'got {}'.format(len(arrays) - 1, i))
        return float(arrays[i][j])

    def modify(self, which, values):
        """Overwrite a quantity of the walker.

        Parameters
        ----------
        which : int
            0: lowest bin index, 1: highest bin index, 2: bin width, 3: the
            whole reduced temperature array.
        values : float or sequence of float
            The new value(s). Indices and bin width are rounded to the
            nearest integer.

        Notes
        -----
        The number of bins is not recomputed when the bin indices change.

        """
        histogram = self.state.histogram
        if which == 3:
            values = np.asarray(values, dtype=np.float64)
            if values.shape != histogram.temperatures.shape:
                raise ValueError('Expected {} temperatures, got {}'.format(
                    histogram.n_bins, values.shape))
            histogram.temperatures[:] = values
            return
        value = np.ravel(values)[0]
        if which == 0:
            histogram.bin_min = nearest_integer(value)
        elif which == 1:
            histogram.bin_max = nearest_integer(value)
        elif which == 2:
            histogram.bin_width = float(nearest_integer(value))
        else:
            raise IndexError('modify index must be between 0 and 3, got {}'.format(which))

    def extract(self, name):
        """Return a named quantity. Only 'scale_stmd' (the scaling factor) exists."""
        if name == 'scale_stmd':
            return self.gamma
        return None

    def memory_usage(self):
        """Approximate number of bytes used by the per-bin arrays."""
        histogram = self.state.histogram
        arrays = [histogram.temperatures, histogram.histogram, histogram.cumulative_histogram,
                  histogram.production_histogram, histogram.probabilities]
        return sum(array.nbytes for array in arrays)

    def __repr__(self):
        return '<STMD(walker_id={}, stage={}, f={}, n_bins={})>'.format(
            self.walker_id, self.stage, self.f, self.n_bins)
