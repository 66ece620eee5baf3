#!/usr/bin/env python

# =============================================================================
# MODULE DOCSTRING
# =============================================================================

"""
Test the stage controller and the reduction policies in stages.py.

"""

# =============================================================================
# GLOBAL IMPORTS
# =============================================================================

import math

import numpy as np
import pytest

from stmd.estimator import EstimatorState, TemperatureEstimator
from stmd.stages import *
from stmd.utils import ConfigurationError


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def create_controller(policy='sqrt', dig_interval=100, reduction_interval=50,
                      final_df=0.001, stage=DIG, temperature=None):
    """Controller of a walker with five bins of width 10 and temperature bounds [1, 2]."""
    state = EstimatorState.from_temperatures(0.0, 40.0, 10.0, 300.0, 600.0, 300.0, 0.01)
    state.stage = stage
    if temperature is not None:
        state.histogram.temperatures[:] = temperature
    estimator = TemperatureEstimator(state)
    return StageController(estimator, policy, dig_interval, reduction_interval, final_df)


def fill_histogram(state, counts):
    state.histogram.histogram[:] = counts
    state.n_hist_samples = int(sum(counts))


# =============================================================================
# TEST FUNCTIONS
# =============================================================================

def test_create_policy():
    """Policies are found by name and by their legacy alias."""
    assert isinstance(create_policy('none'), NoReduction)
    assert isinstance(create_policy('flatness-gated'), FlatnessGatedReduction)
    assert isinstance(create_policy('hchk'), FlatnessGatedReduction)
    assert isinstance(create_policy('sqrt'), SqrtReduction)
    assert isinstance(create_policy('constant-subtract'), ConstantSubtractReduction)
    assert isinstance(create_policy('constant_f'), ConstantSubtractReduction)
    assert isinstance(create_policy('constant-df-decay'), ConstantDfDecay)
    assert isinstance(create_policy('constant_df'), ConstantDfDecay)


def test_unknown_policy():
    with pytest.raises(UnknownPolicyError):
        create_policy('linear')
    with pytest.raises(ConfigurationError):
        create_controller(policy='linear')


def test_thresholds():
    controller = create_controller(final_df=0.001)
    assert controller.coarse_threshold == pytest.approx(math.exp(0.02))
    assert controller.fine_threshold == pytest.approx(math.exp(0.002))


def test_dig_to_flatten():
    """Sampling the middle bin floors the low energy tail and ends the Dig stage."""
    controller = create_controller(dig_interval=100)
    state = controller.state
    for step in range(1, 100):
        controller.estimator.record(step, 20.0)
        controller.advance(step)
        assert controller.stage == DIG

    controller.estimator.record(100, 20.0)
    controller.advance(100)
    assert controller.stage == FLATTEN
    assert state.temperatures[0] == state.histogram.low_temperature
    assert state.temperatures[1] == state.histogram.low_temperature
    # The transient histogram is reset on the transition.
    assert state.n_hist_samples == 0
    assert np.all(state.histogram.histogram == 0)
    assert state.histogram.cumulative_histogram[2] == 100


def test_dig_without_transition():
    """The walker keeps digging while the floor is not reached."""
    controller = create_controller(dig_interval=10)
    state = controller.state
    state.histogram.temperatures[:] = [2.0, 1.9, 1.5, 1.8, 2.0]
    controller.advance(5)
    assert np.array_equal(state.temperatures, [2.0, 1.9, 1.5, 1.8, 2.0])
    controller.advance(10)
    assert np.array_equal(state.temperatures, [1.5, 1.5, 1.5, 1.8, 2.0])
    assert controller.stage == DIG


def test_sqrt_schedule():
    """With the sqrt policy f_k = f_0^(1/2^k) until production freezes it."""
    controller = create_controller(policy='sqrt', reduction_interval=50,
                                   final_df=0.001, stage=FLATTEN)
    state = controller.state
    f0 = state.f

    # Nothing happens between reductions.
    controller.advance(25)
    assert state.f == f0

    expected_stages = [FLATTEN]*3 + [REFINE]*3 + [PRODUCTION]*3
    for k, expected_stage in enumerate(expected_stages, start=1):
        controller.advance(50*k)
        assert state.stage == expected_stage
        assert state.f == pytest.approx(f0**(1.0 / 2**min(k, 7)))
        assert state.df == pytest.approx(math.log(state.f) / 20.0)
        assert state.n_hist_samples == 0


def test_stages_move_forward():
    """Stages never decrease and f never increases."""
    controller = create_controller(policy='sqrt', dig_interval=10, reduction_interval=10,
                                   final_df=0.001)
    random_state = np.random.RandomState(0)
    stages = [controller.stage]
    fs = [controller.state.f]
    for step in range(1, 2001):
        controller.estimator.record(step, random_state.uniform(5.0, 34.0))
        controller.advance(step)
        stages.append(controller.stage)
        fs.append(controller.state.f)
    assert all(s1 <= s2 for s1, s2 in zip(stages[:-1], stages[1:]))
    assert all(f1 >= f2 for f1, f2 in zip(fs[:-1], fs[1:]))
    assert stages[-1] == PRODUCTION


def test_refine_resets_production_counter():
    controller = create_controller(policy='sqrt', final_df=0.01, stage=FLATTEN)
    state = controller.state
    state.n_production_samples = 42
    controller.advance(50)
    assert state.stage == REFINE
    assert state.n_production_samples == 0


def test_production_is_frozen():
    """In Production f and df do not change but the histogram is still reset."""
    controller = create_controller(policy='sqrt', stage=PRODUCTION)
    state = controller.state
    f, df = state.f, state.df
    fill_histogram(state, [0, 3, 3, 3, 0])
    controller.advance(50)
    assert (state.f, state.df) == (f, df)
    assert state.n_hist_samples == 0
    assert state.stage == PRODUCTION


def test_no_reduction():
    """The 'none' policy never reduces f and never leaves the Flatten stage."""
    controller = create_controller(policy='none', final_df=0.1, stage=FLATTEN)
    state = controller.state
    f = state.f
    fill_histogram(state, [0, 3, 3, 3, 0])
    controller.advance(50)
    assert state.f == f
    assert state.stage == FLATTEN
    assert state.n_hist_samples == 0


def test_constant_subtract():
    """f loses 10% above 1.2 and is square rooted below."""
    controller = create_controller(policy='constant-subtract', stage=FLATTEN)
    state = controller.state
    state.f = 1.5
    controller.advance(50)
    assert state.f == pytest.approx(1.35)
    assert state.df == pytest.approx(math.log(1.35) / 20.0)

    state.f = 1.1
    controller.advance(100)
    assert state.f == pytest.approx(math.sqrt(1.1))


def test_constant_df_decay():
    """df decays by 1% and the transient histogram is kept."""
    controller = create_controller(policy='constant-df-decay', stage=FLATTEN)
    state = controller.state
    fill_histogram(state, [0, 3, 3, 3, 0])
    controller.advance(50)
    assert state.df == pytest.approx(0.0099)
    assert state.f == pytest.approx(math.exp(20.0 * 0.0099))
    assert state.n_hist_samples == 9
    assert np.array_equal(state.histogram.histogram, [0, 3, 3, 3, 0])


def test_convergence_error():
    """A reduction taking f to 1 is fatal."""
    controller = create_controller(policy='constant-df-decay', stage=FLATTEN)
    state = controller.state
    state.df = 1e-20
    with pytest.raises(ConvergenceError):
        controller.advance(50)


def test_check_flatness():
    """Bins deviating more than 20% from the mean break flatness."""
    state = create_controller(temperature=1.5).state

    fill_histogram(state, [10, 10, 10, 10, 10])
    assert check_flatness(state) is True
    assert (state.flat_count_old, state.flat_count) == (1, 2)

    fill_histogram(state, [10, 10, 10, 10, 0])
    assert check_flatness(state) is False
    assert (state.flat_count_old, state.flat_count) == (2, 2)

    # An empty histogram is considered flat.
    fill_histogram(state, [0, 0, 0, 0, 0])
    assert check_flatness(state) is True
    assert state.flat_count == 3


def test_check_flatness_empty_window():
    """Bins outside the flatness window are ignored."""
    state = create_controller().state
    state.histogram.temperatures[:] = [2.0, 1.5, 1.5, 1.5, 2.0]
    fill_histogram(state, [0, 10, 11, 9, 0])
    assert check_flatness(state) is True

    state.histogram.temperatures[:] = 2.0
    assert check_flatness(state) is None
    assert state.flat_count == state.flat_count_old == 2


def test_flatness_gated_reduction():
    """f is square rooted only when a new flat histogram is found."""
    controller = create_controller(policy='flatness-gated', stage=FLATTEN, temperature=1.5)
    state = controller.state
    f0 = state.f

    fill_histogram(state, [10, 10, 10, 10, 0])
    controller.advance(50)
    assert state.f == f0
    assert state.n_checks == 2
    assert state.n_hist_samples == 40

    fill_histogram(state, [10, 10, 10, 10, 10])
    controller.advance(100)
    assert state.f == pytest.approx(math.sqrt(f0))
    assert state.n_checks == 1
    assert state.n_hist_samples == 0
    assert np.all(state.histogram.histogram == 0)


def test_flatness_gated_refinement():
    """Entering Refine with the flatness-gated policy resets the checks."""
    controller = create_controller(policy='flatness-gated', final_df=0.01,
                                   stage=FLATTEN, temperature=1.5)
    state = controller.state
    fill_histogram(state, [10, 10, 10, 10, 10])
    controller.advance(50)
    assert state.stage == REFINE
    assert state.n_checks == 1
    assert state.n_hist_samples == 0


def test_on_refine_hook():
    """The controller lets the policy decide what happens when Refine starts."""
    class RecordingPolicy(object):
        def __init__(self, policy):
            self.policy = policy
            self.name = policy.name
            self.reaches_refinement = policy.reaches_refinement
            self.refined_states = []

        def reduce(self, state, step, frozen=False):
            return self.policy.reduce(state, step, frozen=frozen)

        def on_refine(self, state):
            self.refined_states.append(state)
            return self.policy.on_refine(state)

    controller = create_controller(policy='sqrt', final_df=0.01, stage=FLATTEN)
    controller.policy = RecordingPolicy(controller.policy)
    state = controller.state
    state.n_checks = 5
    controller.advance(50)
    assert state.stage == REFINE
    assert controller.policy.refined_states == [state]
    assert state.n_checks == 5

    # Only the flatness-gated policy restarts the flatness checks.
    assert SqrtReduction().on_refine(state) is False
    assert state.n_checks == 5
    assert FlatnessGatedReduction().on_refine(state) is True
    assert state.n_checks == 1


def test_normalize_probabilities():
    """The per-bin weights are rescaled with the periods of the controller."""
    controller = create_controller(dig_interval=10, reduction_interval=50)
    probabilities = controller.state.histogram.probabilities
    probabilities[:] = 1000.0
    assert controller.normalize_probabilities(0) is None
    assert controller.normalize_probabilities(30) == 10
    assert controller.normalize_probabilities(50) == 50
    assert np.allclose(probabilities, 2.0)
