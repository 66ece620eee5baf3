#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
Stages
======

Convergence controller of the statistical temperature estimator.

A walker goes through four stages, strictly forward:

1. **Dig**: the low energy tail of the temperature array is periodically
   floored at its running minimum until the lowest bin reaches the lower
   temperature bound.
2. **Flatten**: the modification factor f is periodically reduced following
   the configured reduction policy until it reaches the coarse tolerance.
3. **Refine**: the reduction goes on and the production histogram is
   collected, until f reaches the fine tolerance.
4. **Production**: f and df are frozen, the production histogram keeps
   accumulating.

The reduction policies are implemented as subclasses of
:class:`ReductionPolicy` and are selected by name with :func:`create_policy`.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import abc
import math
import logging

import numpy as np

from .utils import STMDError, ConfigurationError, find_all_subclasses

logger = logging.getLogger(__name__)


# ==============================================================================
# CONSTANTS
# ==============================================================================

DIG = 1
FLATTEN = 2
REFINE = 3
PRODUCTION = 4

STAGE_NAMES = {DIG: 'dig', FLATTEN: 'flatten', REFINE: 'refine', PRODUCTION: 'production'}

# Maximum relative deviation from the mean of a flat histogram bin.
FLATNESS_TOLERANCE = 0.2


# ==============================================================================
# EXCEPTIONS
# ==============================================================================

class ConvergenceError(STMDError):
    """The modification factor reached 1. The reduction schedule is misconfigured."""
    pass


class UnknownPolicyError(ConfigurationError):
    """The requested reduction policy does not exist."""
    pass


# ==============================================================================
# FLATNESS CHECK
# ==============================================================================

def check_flatness(state, tolerance=FLATNESS_TOLERANCE):
    """Test the flatness of the transient histogram inside the flatness window.

    Only the bins whose temperature lies strictly inside the flatness window
    are considered. A bin fails the test if its relative deviation from the
    mean count exceeds ``tolerance``. When the test passes, the flatness
    counter of the state is incremented. The value of the counter before the
    test is saved in ``state.flat_count_old``.

    Parameters
    ----------
    state : EstimatorState
        The walker state.
    tolerance : float, optional
        The maximum relative deviation of a flat bin.

    Returns
    -------
    is_flat : bool or None
        True if the histogram is flat, False if it is not, and None if no
        bin lies in the flatness window.

    """
    state.flat_count_old = state.flat_count

    temperatures = state.histogram.temperatures
    ct_min, ct_max = state.flatness_window
    in_window = (temperatures > ct_min) & (temperatures < ct_max)
    n_window_bins = int(np.count_nonzero(in_window))
    if n_window_bins == 0:
        logger.debug('Flatness check: no bin in the temperature window')
        return None

    counts = state.histogram.histogram[in_window]
    mean_count = counts.sum() / n_window_bins
    if mean_count == 0.0:
        # An empty histogram has no deviations.
        n_failed = 0
    else:
        deviations = np.abs(counts - mean_count) / mean_count
        n_failed = int(np.count_nonzero(deviations > tolerance))

    logger.debug('Flatness check: %d bins in window, mean count %.3f, %d bins not flat',
                 n_window_bins, mean_count, n_failed)
    if n_failed < 1:
        state.flat_count += 1
        return True
    return False


# ==============================================================================
# REDUCTION POLICIES
# ==============================================================================

class ReductionPolicy(abc.ABC):
    """Periodic update of the modification factor.

    Subclasses implement :meth:`reduce`, called every reduction interval in
    the Flatten and Refine stages. In Production the method is still called,
    with ``frozen=True``, so that the bookkeeping of the policy goes on while
    f and df are left unchanged.

    """

    #: The name used in configuration files.
    name = None
    #: Alternative accepted names.
    aliases = ()
    #: Whether the policy can drive the walker out of the Flatten stage.
    reaches_refinement = True

    @abc.abstractmethod
    def reduce(self, state, step, frozen=False):
        """Update f and df.

        Parameters
        ----------
        state : EstimatorState
            The walker state.
        step : int
            The current host step.
        frozen : bool, optional
            If True, f and df must not be modified.

        Returns
        -------
        reset_histogram : bool
            True if the transient histogram must be reset.

        """
        pass

    def on_refine(self, state):
        """Called once when the walker enters the Refine stage.

        Returns
        -------
        reset_histogram : bool
            True if the transient histogram must be reset.

        """
        return False

    def __repr__(self):
        return '<{}>'.format(self.__class__.__name__)


class NoReduction(ReductionPolicy):
    """Simulate at the initial f. The walker stays in the Flatten stage."""

    name = 'none'
    reaches_refinement = False

    def reduce(self, state, step, frozen=False):
        return True


class FlatnessGatedReduction(ReductionPolicy):
    """Take the square root of f every time a new flat histogram is found."""

    name = 'flatness-gated'
    aliases = ('hchk',)

    def reduce(self, state, step, frozen=False):
        check_flatness(state)
        if state.flat_count != state.flat_count_old:
            if not frozen:
                state.f = math.sqrt(state.f)
                state.update_df()
            state.n_checks = 1
            return True
        state.n_checks += 1
        return False

    def on_refine(self, state):
        # Flatness checks restart with the refinement.
        state.n_checks = 1
        return True


class SqrtReduction(ReductionPolicy):
    """Take the square root of f every interval."""

    name = 'sqrt'

    def reduce(self, state, step, frozen=False):
        if step != 0 and not frozen:
            state.f = math.sqrt(state.f)
            state.update_df()
        return True


class ConstantSubtractReduction(ReductionPolicy):
    """Subtract 10% of f every interval, or take its square root once f <= 1.2."""

    name = 'constant-subtract'
    aliases = ('constant_f',)
    reduce_fraction = 0.1

    def reduce(self, state, step, frozen=False):
        if step != 0 and not frozen:
            if state.f > 1.0 + 2*self.reduce_fraction:
                state.f = state.f - self.reduce_fraction * state.f
            else:
                state.f = math.sqrt(state.f)
            state.update_df()
        return True


class ConstantDfDecay(ReductionPolicy):
    """Decay df by 1% every interval. The transient histogram is never reset."""

    name = 'constant-df-decay'
    aliases = ('constant_df',)
    reduce_fraction = 0.01

    def reduce(self, state, step, frozen=False):
        if step != 0 and not frozen:
            state.df = state.df - state.df * self.reduce_fraction
            state.f = math.exp(2.0 * state.histogram.bin_width * state.df)
        return False


def available_policies():
    """Return a dict mapping every accepted policy name to its class."""
    policies = {}
    for policy_cls in find_all_subclasses(ReductionPolicy, discard_abstract=True):
        for name in (policy_cls.name,) + tuple(policy_cls.aliases):
            policies[name] = policy_cls
    return policies


def create_policy(name):
    """Instantiate the reduction policy called ``name``.

    Raises
    ------
    UnknownPolicyError
        If there is no policy with the given name.

    Examples
    --------
    >>> create_policy('sqrt')
    <SqrtReduction>
    >>> create_policy('hchk')
    <FlatnessGatedReduction>

    """
    policies = available_policies()
    try:
        return policies[name]()
    except KeyError:
        raise UnknownPolicyError("Unknown reduction policy '{}'. Supported values are "
                                 "{}.".format(name, sorted(policies)))


# ==============================================================================
# STAGE CONTROLLER
# ==============================================================================

class StageController(object):
    """Four-stage state machine driving the temperature estimator.

    Parameters
    ----------
    estimator : TemperatureEstimator
        The estimator whose state is controlled.
    policy : ReductionPolicy or str
        The f-reduction policy or its name.
    dig_interval : int
        Number of steps between two dig operations in the Dig stage.
    reduction_interval : int
        Number of steps between two reductions of f in the later stages.
    final_df : float
        The df tolerance. The walker moves to Refine when
        ``f <= exp(2 * bin_width * final_df)`` and to Production when
        ``f <= exp(2 * bin_width * final_df / 10)``.

    Attributes
    ----------
    coarse_threshold : float
        Value of f that ends the Flatten stage.
    fine_threshold : float
        Value of f that ends the Refine stage.

    """

    def __init__(self, estimator, policy, dig_interval, reduction_interval, final_df):
        if isinstance(policy, str):
            policy = create_policy(policy)
        self.estimator = estimator
        self.policy = policy
        self.dig_interval = dig_interval
        self.reduction_interval = reduction_interval

        bin_width = estimator.state.histogram.bin_width
        self.coarse_threshold = math.exp(final_df * 2.0 * bin_width)
        self.fine_threshold = math.exp(final_df / 10.0 * 2.0 * bin_width)

    @property
    def state(self):
        return self.estimator.state

    @property
    def stage(self):
        return self.state.stage

    def _reset_histogram(self):
        self.state.histogram.reset_production_histogram()
        self.state.n_hist_samples = 0

    def _set_stage(self, stage):
        logger.info('Step {}: stage {} ({}) -> stage {} ({}), f = {:.10f}'.format(
            self.state.step, self.state.stage, STAGE_NAMES[self.state.stage],
            stage, STAGE_NAMES[stage], self.state.f))
        self.state.stage = stage

    def advance(self, step):
        """Run the logic of the current stage for this step.

        Only the logic of the stage the walker is in when the method is
        called runs, even if a transition happens during this step.

        Raises
        ------
        ConvergenceError
            If a reduction of f takes it to 1 or below.

        """
        stage = self.state.stage
        if stage == DIG:
            if step % self.dig_interval == 0:
                self._dig_step()
        elif step % self.reduction_interval == 0:
            if stage == FLATTEN:
                self._flatten_step(step)
            else:
                self._refine_step(step)

    def _dig_step(self):
        self.estimator.dig()
        state = self.state
        if state.histogram.temperatures[0] == state.histogram.low_temperature:
            self._set_stage(FLATTEN)
            self._reset_histogram()

    def _reduce(self, step, frozen=False):
        f_old = self.state.f
        reset = self.policy.reduce(self.state, step, frozen=frozen)
        if reset:
            self._reset_histogram()
        if self.state.f != f_old:
            logger.debug('Step %d: f reduced from %.12f to %.12f (df = %.12g)',
                         step, f_old, self.state.f, self.state.df)
        if self.state.f <= 1.0:
            raise ConvergenceError('Step {}: f-value {} is less than unity after '
                                   'a {} reduction'.format(step, self.state.f, self.policy.name))

    def _flatten_step(self, step):
        state = self.state
        self._reduce(step)
        if self.policy.reaches_refinement and state.f <= self.coarse_threshold:
            self._set_stage(REFINE)
            state.n_production_samples = 0
            if self.policy.on_refine(state):
                self._reset_histogram()

    def _refine_step(self, step):
        frozen = self.state.stage == PRODUCTION
        self._reduce(step, frozen=frozen)
        if not frozen and self.state.f <= self.fine_threshold:
            self._set_stage(PRODUCTION)

    def normalize_probabilities(self, step):
        """Rescale the per-bin weights of the histogram (see
        :meth:`~stmd.histogram.EnergyBinHistogram.normalize_probabilities`)."""
        return self.state.histogram.normalize_probabilities(step, self.dig_interval,
                                                            self.reduction_interval)
