#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
Histogram
=========

Energy binning and per-bin storage of the statistical temperature estimator.

The energy axis between ``energy_min`` and ``energy_max`` is divided in bins
of width ``bin_width`` centered on integer multiples of the width. Every bin
stores the current dimensionless statistical temperature and three visit
counters: the transient histogram (reset periodically by the stage
controller), the cumulative histogram (never reset) and the production
histogram (accumulated once the estimator is refining or producing).

The temperature recursion touches both neighbors of the sampled bin, so the
two outermost bins can be updated but never sampled.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import logging

import numpy as np

from .utils import STMDError, nearest_integer

logger = logging.getLogger(__name__)


# ==============================================================================
# EXCEPTIONS
# ==============================================================================

class SamplingRangeError(STMDError):
    """The sampled energy left the binned energy range.

    This is usually caused either by an energy range that does not cover the
    simulated ensemble or by a simulation that is blowing up.

    """
    pass


# ==============================================================================
# ENERGY BIN HISTOGRAM
# ==============================================================================

class EnergyBinHistogram(object):
    """Energy-to-bin mapping and per-bin arrays of a walker.

    Parameters
    ----------
    energy_min : float
        Lower bound of the sampled energy range.
    energy_max : float
        Upper bound of the sampled energy range.
    bin_width : float
        Width of an energy bin.
    low_temperature : float
        Dimensionless lower bound of the temperature array (T1).
    high_temperature : float
        Dimensionless upper bound of the temperature array (T2). The
        temperature array is initialized to this value.

    Attributes
    ----------
    bin_min : int
        Index of the lowest bin on the absolute energy axis.
    bin_max : int
        Index of the highest bin on the absolute energy axis.
    n_bins : int
        Number of bins.
    temperatures : numpy.ndarray
        Dimensionless statistical temperature of each bin.
    histogram : numpy.ndarray
        Visits since the last reset.
    cumulative_histogram : numpy.ndarray
        Visits over the lifetime of the walker.
    production_histogram : numpy.ndarray
        Visits collected in the refinement and production stages.
    probabilities : numpy.ndarray
        Per-bin weights rescaled by :meth:`normalize_probabilities`.

    Examples
    --------
    >>> histogram = EnergyBinHistogram(0.0, 40.0, 10.0, 0.5, 2.0)
    >>> histogram.n_bins
    5
    >>> histogram.bin_index(19.0)
    2

    """

    def __init__(self, energy_min, energy_max, bin_width, low_temperature, high_temperature):
        if bin_width <= 0.0:
            raise ValueError('The bin width must be positive, got {}'.format(bin_width))
        self.energy_min = float(energy_min)
        self.energy_max = float(energy_max)
        self.bin_width = float(bin_width)
        self.low_temperature = float(low_temperature)
        self.high_temperature = float(high_temperature)

        self.bin_min = nearest_integer(self.energy_min / self.bin_width)
        self.bin_max = nearest_integer(self.energy_max / self.bin_width)
        self.n_bins = self.bin_max - self.bin_min + 1

        self.temperatures = np.full(self.n_bins, self.high_temperature)
        self.histogram = np.zeros(self.n_bins)
        self.cumulative_histogram = np.zeros(self.n_bins)
        self.production_histogram = np.zeros(self.n_bins)
        self.probabilities = np.zeros(self.n_bins)

    @property
    def bin_energies(self):
        """Energy associated to each bin."""
        return self.energy_min + np.arange(self.n_bins) * self.bin_width

    @property
    def sampled_bins(self):
        """The range of bin indices that can be sampled."""
        return range(1, self.n_bins - 1)

    def bin_index(self, energy):
        """Map a potential energy to its bin.

        Parameters
        ----------
        energy : float
            The sampled potential energy.

        Returns
        -------
        bin_index : int
            The index of the bin, between 1 and ``n_bins - 2``.

        Raises
        ------
        SamplingRangeError
            If the energy is outside the energy range, or it falls in one of
            the two outermost bins.

        """
        if not self.energy_min <= energy <= self.energy_max:
            raise SamplingRangeError('Sampled energy {} is outside the energy range '
                                     '[{}, {}]'.format(energy, self.energy_min, self.energy_max))
        bin_index = nearest_integer(energy / self.bin_width) - self.bin_min
        if not 1 <= bin_index <= self.n_bins - 2:
            raise SamplingRangeError('Histogram index {} of energy {} is out of the sampled '
                                     'range [1, {}]'.format(bin_index, energy, self.n_bins - 2))
        return bin_index

    def add_sample(self, bin_index):
        """Record a visit in the transient and cumulative histograms."""
        self.histogram[bin_index] += 1
        self.cumulative_histogram[bin_index] += 1

    def add_production_sample(self, bin_index):
        self.production_histogram[bin_index] += 1

    def reset_histogram(self):
        """Clear the transient histogram."""
        self.histogram[:] = 0

    def reset_production_histogram(self):
        """Clear the transient histogram.

        Despite its name, this leaves the production histogram untouched.
        The production histogram is only cleared by constructing a new
        walker, and the name is kept for compatibility with existing
        analysis scripts.

        """
        self.reset_histogram()

    def normalize_probabilities(self, step, dig_interval, reduction_interval):
        """Rescale the per-bin weights by the period that just elapsed.

        The weights are divided by ``reduction_interval`` on steps multiple of
        it, and by ``dig_interval`` on the remaining multiples of
        ``dig_interval``. On step 0 and on every other step this is a no-op.

        Returns
        -------
        period : int or None
            The period used to normalize, or None if nothing was done.

        """
        if step == 0:
            return None
        elif step % reduction_interval == 0:
            period = reduction_interval
        elif step % dig_interval == 0:
            period = dig_interval
        else:
            # Neither period elapsed.
            return None
        self.probabilities /= period
        return period
