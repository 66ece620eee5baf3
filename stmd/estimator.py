#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
Estimator
=========

Statistical temperature estimator.

The estimator learns the statistical temperature T(E) = (dS/dE)^-1 of the
system with a Wang-Landau recursion expressed in temperature space. Every
sampled energy lowers the temperature of the bin below the sampled bin and
raises the temperature of the bin above it, which flattens the energy
histogram of a simulation whose forces are scaled by ``T0/T(E)``.

All the mutable quantities of a walker live in a single :class:`EstimatorState`
record. The :class:`TemperatureEstimator` and the
:class:`~stmd.stages.StageController` operate on that record, so the whole
recursion can be driven without a simulation engine.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import math
import logging

import numpy as np

from .histogram import EnergyBinHistogram
from .utils import nearest_integer

logger = logging.getLogger(__name__)


# ==============================================================================
# CONSTANTS
# ==============================================================================

# Distance (in temperature units) of the flatness window from the temperature bounds.
FLATNESS_WINDOW_MARGIN = 50.0


# ==============================================================================
# ESTIMATOR STATE
# ==============================================================================

class EstimatorState(object):
    """The mutable state of a walker.

    Parameters
    ----------
    histogram : EnergyBinHistogram
        The per-bin arrays.
    reference_temperature : float
        The kinetic temperature ST used to make temperatures dimensionless.
    initial_df : float
        Initial value of df. This sets ``f = exp(2 * bin_width * initial_df)``.

    Attributes
    ----------
    stage : int
        Current stage, between 1 (dig) and 4 (production).
    f : float
        The modification factor. Always greater than 1.
    df : float
        The temperature update step, ``ln(f) / (2 * bin_width)``.
    flatness_window : tuple of float
        Dimensionless temperatures bounding the bins considered by the
        flatness check.
    step : int
        The last host step processed.
    n_samples : int
        Number of energies sampled over the lifetime of the walker.
    n_hist_samples : int
        Number of energies sampled since the transient histogram was reset.
    flat_count : int
        Number of flat histograms found so far.
    flat_count_old : int
        Value of ``flat_count`` before the last flatness check.
    n_checks : int
        Number of flatness checks since the last reduction of f.
    n_production_samples : int
        Number of energies sampled since the start of the refinement stage.
    last_bin : int or None
        The last sampled bin.
    temperature : float
        Dimensionless statistical temperature interpolated at the last
        sampled energy.
    gamma : float
        The force scaling factor ``1 / temperature``.

    """

    def __init__(self, histogram, reference_temperature, initial_df):
        self.histogram = histogram
        self.reference_temperature = float(reference_temperature)

        self.stage = 1
        self.f = math.exp(initial_df * 2.0 * histogram.bin_width)
        self.df = 0.0
        self.update_df()

        low = (histogram.low_temperature * self.reference_temperature + FLATNESS_WINDOW_MARGIN)
        high = (histogram.high_temperature * self.reference_temperature - FLATNESS_WINDOW_MARGIN)
        self.flatness_window = (low / self.reference_temperature,
                                high / self.reference_temperature)

        self.step = 0
        self.n_samples = 0
        self.n_hist_samples = 0
        self.flat_count = 1
        self.flat_count_old = 1
        self.n_checks = 1
        self.n_production_samples = 0

        self.last_bin = None
        self.temperature = 1.0
        self.gamma = 1.0

    @classmethod
    def from_temperatures(cls, energy_min, energy_max, bin_width, low_temperature,
                          high_temperature, reference_temperature, initial_df):
        """Create the state from absolute temperatures.

        Parameters
        ----------
        low_temperature : float
            Lower bound of the statistical temperature in the same units of
            ``reference_temperature``.
        high_temperature : float
            Upper bound of the statistical temperature.

        Examples
        --------
        >>> state = EstimatorState.from_temperatures(0.0, 40.0, 10.0, 300.0, 600.0,
        ...                                          300.0, 0.01)
        >>> state.histogram.temperatures
        array([2., 2., 2., 2., 2.])

        """
        histogram = EnergyBinHistogram(energy_min, energy_max, bin_width,
                                       low_temperature / reference_temperature,
                                       high_temperature / reference_temperature)
        return cls(histogram, reference_temperature, initial_df)

    def update_df(self):
        """Recompute df from the current value of f."""
        self.df = math.log(self.f) * 0.5 / self.histogram.bin_width

    @property
    def n_bins(self):
        return self.histogram.n_bins

    @property
    def temperatures(self):
        return self.histogram.temperatures

    def __eq__(self, other):
        if not isinstance(other, EstimatorState):
            return NotImplemented
        scalars = ['stage', 'f', 'flatness_window', 'step', 'n_samples',
                   'n_hist_samples', 'flat_count', 'flat_count_old', 'n_checks',
                   'n_production_samples', 'reference_temperature']
        if any(getattr(self, name) != getattr(other, name) for name in scalars):
            return False
        # df is derived from f after a restart.
        if not math.isclose(self.df, other.df, rel_tol=1e-12, abs_tol=1e-15):
            return False
        arrays = ['temperatures', 'cumulative_histogram', 'production_histogram']
        return (self.histogram.low_temperature == other.histogram.low_temperature and
                self.histogram.high_temperature == other.histogram.high_temperature and
                all(np.array_equal(getattr(self.histogram, name), getattr(other.histogram, name))
                    for name in arrays))

    def __repr__(self):
        return ('<EstimatorState(stage={}, f={}, df={}, n_bins={}, n_samples={})>'
                ''.format(self.stage, self.f, self.df, self.n_bins, self.n_samples))


# ==============================================================================
# TEMPERATURE ESTIMATOR
# ==============================================================================

class TemperatureEstimator(object):
    """Recursive update of the statistical temperature.

    Parameters
    ----------
    state : EstimatorState
        The state modified in place by the estimator.

    """

    def __init__(self, state):
        self.state = state

    def sample(self, energy):
        """Update the temperatures of the two neighbors of the sampled bin.

        The neighbor at lower energy is cooled and floored at the low
        temperature bound, the neighbor at higher energy is heated and
        capped at the high temperature bound.

        Parameters
        ----------
        energy : float
            The sampled potential energy.

        Returns
        -------
        bin_index : int
            The sampled bin.

        Raises
        ------
        SamplingRangeError
            If the energy cannot be sampled.

        """
        histogram = self.state.histogram
        temperatures = histogram.temperatures
        df = self.state.df
        i = histogram.bin_index(energy)

        temperatures[i+1] = temperatures[i+1] / (1.0 - df * temperatures[i+1])
        temperatures[i-1] = temperatures[i-1] / (1.0 + df * temperatures[i-1])
        if temperatures[i-1] < histogram.low_temperature:
            temperatures[i-1] = histogram.low_temperature
        if temperatures[i+1] > histogram.high_temperature:
            temperatures[i+1] = histogram.high_temperature

        self.state.last_bin = i
        logger.debug('Sampled bin %d: T[%d]=%.8f T[%d]=%.8f', i, i-1, temperatures[i-1],
                     i+1, temperatures[i+1])
        return i

    def scaling_factor(self, energy, bin_index):
        """Interpolate the statistical temperature and return the force scaling.

        The temperature is linearly interpolated between the center of the
        sampled bin and the center of the neighbor closest to the energy.

        Parameters
        ----------
        energy : float
            The sampled potential energy.
        bin_index : int
            The bin of the energy as returned by :meth:`sample`.

        Returns
        -------
        gamma : float
            The force scaling factor ``1 / T(E)``.

        """
        bin_width = self.state.histogram.bin_width
        temperatures = self.state.histogram.temperatures
        i = bin_index

        residual = energy - nearest_integer(energy / bin_width) * bin_width
        if residual > 0.0:
            temperature = temperatures[i] + (temperatures[i+1] - temperatures[i]) / bin_width * residual
        elif residual < 0.0:
            temperature = temperatures[i] + (temperatures[i] - temperatures[i-1]) / bin_width * residual
        else:
            temperature = temperatures[i]

        self.state.temperature = float(temperature)
        self.state.gamma = 1.0 / self.state.temperature
        return self.state.gamma

    def dig(self):
        """Floor the low energy tail of the temperature array.

        The last position of the minimum temperature is located, and every
        bin at lower energy is set to the minimum.

        """
        temperatures = self.state.histogram.temperatures
        min_index = 0
        min_temperature = temperatures[0]
        for i, temperature in enumerate(temperatures):
            if temperature <= min_temperature:
                min_temperature = temperature
                min_index = i
        temperatures[:min_index] = min_temperature
        logger.debug('Dig: floored bins [0, %d) at T=%.8f', min_index, min_temperature)

    def record(self, step, energy):
        """Process the energy sampled by the host at the given step.

        Updates the counters, the temperature array and the histograms.

        Parameters
        ----------
        step : int
            The host step index.
        energy : float
            The potential energy at this step.

        Returns
        -------
        gamma : float
            The force scaling factor.

        """
        state = self.state
        state.step = step
        state.n_samples += 1
        if state.stage >= 3:
            state.n_production_samples += 1

        bin_index = self.sample(energy)
        gamma = self.scaling_factor(energy, bin_index)

        state.histogram.add_sample(bin_index)
        state.n_hist_samples += 1
        if state.stage >= 3:
            state.histogram.add_production_sample(bin_index)
        return gamma
