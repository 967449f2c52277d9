"""Tests for the predictor toolkit."""

from datetime import datetime

import numpy as np
import pytest

from placement_kernel.errors import ConfigurationInvalid, InsufficientHistory
from placement_kernel.models.decision import PlacementAction, Strategy
from placement_kernel.predictors.bandit import BanditSelector, reward_from_measurements
from placement_kernel.predictors.change_detector import ChangeDetector, estimate_parameters
from placement_kernel.predictors.forecaster import Forecaster, forecast_accuracy
from placement_kernel.predictors.gradient import GradientOptimizer
from placement_kernel.predictors.reinforcement import (
    ReinforcementLearner,
    compute_reward,
    discretize,
)
from placement_kernel.predictors.sequence_matcher import (
    DistanceMetric,
    SequenceMatcher,
    SequencePattern,
    dtw_distance,
)
from placement_kernel.predictors.smoother import ALPHA_CANDIDATES, DEFAULT_ALPHA, Smoother, optimal_alpha


def _calibrated_detector() -> ChangeDetector:
    detector = ChangeDetector(warmup=10)
    for i in range(10):
        detector.update(0.4 if i % 2 else 0.6)
    return detector


class TestForecaster:
    def test_insufficient_history(self):
        forecaster = Forecaster()
        for v in (1.0, 2.0, 3.0):
            forecaster.add_observation(v)
        with pytest.raises(InsufficientHistory) as exc:
            forecaster.predict()
        assert exc.value.required == 4
        assert exc.value.available == 3

    def test_linear_trend_continues(self):
        forecaster = Forecaster()
        for v in range(1, 11):
            forecaster.add_observation(float(v))
        assert forecaster.predict() == pytest.approx(11.0)

    def test_predict_next_restores_state(self):
        forecaster = Forecaster()
        for v in range(1, 11):
            forecaster.add_observation(float(v))
        steps = forecaster.predict_next(3)
        assert len(steps) == 3
        assert len(forecaster) == 10

    def test_fits_after_enough_observations(self):
        forecaster = Forecaster()
        for v in np.sin(np.linspace(0, 6, 30)):
            forecaster.add_observation(float(v))
        assert forecaster.fitted

    def test_accuracy_metrics(self):
        accuracy = forecast_accuracy([1.0, 2.0], [1.0, 4.0])
        assert accuracy.mae == pytest.approx(1.0)
        assert accuracy.mse == pytest.approx(2.0)


class TestSmoother:
    def test_first_value_passes_through(self):
        smoother = Smoother(alpha=0.5)
        assert smoother.update(10.0) == 10.0
        assert smoother.update(20.0) == 15.0

    def test_invalid_alpha_falls_back(self):
        assert Smoother(alpha=1.5).alpha == DEFAULT_ALPHA

    def test_trend(self):
        smoother = Smoother(alpha=0.5)
        for v in range(20):
            smoother.update(float(v))
        assert smoother.trend() == "increasing"

    def test_confidence_interval_widens_with_noise(self):
        steady, noisy = Smoother(alpha=0.3), Smoother(alpha=0.3)
        for i in range(30):
            steady.update(1.0)
            noisy.update(1.0 + (0.5 if i % 2 else -0.5))
        lo, hi = steady.confidence_interval()
        assert lo == pytest.approx(1.0) and hi == pytest.approx(1.0)
        lo, hi = noisy.confidence_interval()
        assert lo < noisy.value < hi
        assert hi - lo > 0.5

    def test_confidence_interval_needs_observations(self):
        with pytest.raises(ValueError):
            Smoother().confidence_interval()

    def test_optimal_alpha_tracks_level_shifts(self):
        step = [0.0] * 10 + [1.0] * 10
        assert optimal_alpha(step) == max(ALPHA_CANDIDATES)
        assert optimal_alpha([1.0]) == DEFAULT_ALPHA


class TestChangeDetector:
    def test_warmup_calibrates(self):
        detector = _calibrated_detector()
        assert detector.calibrated
        assert detector.reference_mean == pytest.approx(0.5)

    def test_cumulative_resets_after_anomaly(self):
        detector = _calibrated_detector()
        result = None
        for _ in range(10):
            result = detector.update(0.9)
            if result.is_anomaly:
                break
        assert result.is_anomaly
        assert result.direction == "upward"
        assert detector.cumulative == 0.0
        assert detector.anomaly_count == 1

    def test_stable_stream_no_anomaly(self):
        detector = _calibrated_detector()
        results = [detector.update(0.5) for _ in range(50)]
        assert not any(r.is_anomaly for r in results)

    def test_adaptive_mode_follows_slow_drift(self):
        fixed = _calibrated_detector()
        adaptive = ChangeDetector(warmup=10, adaptive=True)
        for i in range(10):
            adaptive.update(0.4 if i % 2 else 0.6)
        for i in range(200):
            level = 0.5 + 0.002 * i
            fixed.update(level)
            adaptive.update(level)
        assert adaptive.reference_mean > fixed.reference_mean
        assert fixed.reference_mean == pytest.approx(0.5)

    def test_change_point_likelihood(self):
        detector = _calibrated_detector()
        assert ChangeDetector().change_point_likelihood([1.0, 2.0]) == 0.0
        steady = detector.change_point_likelihood([0.4, 0.6] * 5)
        shifted = detector.change_point_likelihood([0.9] * 10)
        assert steady == pytest.approx(0.0, abs=1e-9)
        assert shifted > 10.0

    def test_estimate_parameters_handles_constant(self):
        mean, std = estimate_parameters([2.0, 2.0, 2.0])
        assert mean == 2.0
        assert std > 0


class TestGradientOptimizer:
    def test_learning_rate_must_be_positive(self):
        with pytest.raises(ConfigurationInvalid):
            GradientOptimizer(0.0)

    def test_descent_step(self):
        optimizer = GradientOptimizer(0.1)
        result = optimizer.update([1.0, 1.0], [1.0, -1.0], loss=0.5)
        assert result == pytest.approx([0.9, 1.1])
        assert optimizer.steps == 1

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            GradientOptimizer(0.1).update([1.0], [1.0, 2.0], loss=0.0)

    def test_weight_decay_shrinks_parameters(self):
        optimizer = GradientOptimizer(0.1, weight_decay=0.5)
        assert optimizer.update([2.0], [0.0], loss=0.0) == pytest.approx([1.9])

    def test_adaptive_rate_normalises_step(self):
        optimizer = GradientOptimizer(0.1, adaptive=True)
        stepped = optimizer.update([0.0, 0.0], [0.01, 100.0], loss=1.0)
        assert stepped == pytest.approx([-0.1, -0.1], rel=1e-4)

    def test_history_and_convergence(self):
        optimizer = GradientOptimizer(0.1, patience=3)
        for loss in [3.0, 2.0, 2.0, 2.0, 2.0]:
            optimizer.update([1.0], [2.0], loss=loss)
        assert optimizer.loss_history == [3.0, 2.0, 2.0, 2.0, 2.0]
        assert optimizer.best_loss == 2.0
        assert optimizer.average_gradient_norm == pytest.approx(2.0)
        assert optimizer.converged


class TestSequenceMatcher:
    def test_identical_sequences_have_zero_distance(self):
        assert dtw_distance([0.0, 1.0, 0.5], [0.0, 1.0, 0.5]) == 0.0

    def test_discovers_repeated_motif(self):
        series = [0.0, 1.0, 2.0, 1.0, 0.0] * 4
        patterns = SequenceMatcher().discover_patterns(series, 3, 5)
        assert patterns
        assert all(p.occurrences >= 2 for p in patterns)

    def test_short_series_yields_nothing(self):
        assert SequenceMatcher().discover_patterns([1.0, 2.0, 3.0], 3, 5) == []

    def test_invalid_lengths(self):
        with pytest.raises(ValueError):
            SequenceMatcher().discover_patterns([1.0] * 10, 1, 5)

    def test_manhattan_metric(self):
        assert dtw_distance([0.0], [0.5], metric=DistanceMetric.MANHATTAN) == pytest.approx(0.25)
        assert dtw_distance([0.0], [0.5]) == pytest.approx(0.125)
        matcher = SequenceMatcher(metric=DistanceMetric.MANHATTAN)
        assert matcher.distance([0.0, 1.0], [0.0, 0.5]) == pytest.approx(0.125)

    def test_find_best_match(self):
        matcher = SequenceMatcher()
        for pattern_id, shape in (("rise", [0.0, 0.5, 1.0]), ("fall", [1.0, 0.5, 0.0])):
            matcher.add_pattern(SequencePattern(
                id=pattern_id, sequence=shape, length=3, occurrences=2, confidence=0.8,
                discovered_at=datetime.utcnow(),
            ))
        pattern, similarity = matcher.find_best_match([10.0, 20.0, 30.0])
        assert pattern.id == "rise"
        assert similarity == pytest.approx(1.0)
        assert pattern.usage_count == 1
        assert matcher.find_best_match([5.0, 5.0, 5.0]) is None


class TestBandit:
    def test_seeded_selection_is_reproducible(self):
        a = BanditSelector(rng=np.random.default_rng(7))
        b = BanditSelector(rng=np.random.default_rng(7))
        assert [a.select_strategy() for _ in range(20)] == [b.select_strategy() for _ in range(20)]

    def test_best_strategy_follows_successes(self):
        bandit = BanditSelector(strategies=[Strategy.BALANCED, Strategy.PERFORMANCE])
        for _ in range(5):
            bandit.update_strategy(Strategy.PERFORMANCE, success=True, reward=1.0)
        assert bandit.best_strategy() == Strategy.PERFORMANCE

    def test_unknown_strategy(self):
        bandit = BanditSelector(strategies=[Strategy.BALANCED])
        with pytest.raises(KeyError):
            bandit.update_strategy(Strategy.PERFORMANCE, success=True)

    def test_reward_from_measurements_bounds(self):
        assert reward_from_measurements(True, True, 1.0) == pytest.approx(0.7)
        assert reward_from_measurements(False, False, 0.0, 0.0) == pytest.approx(-1.0)


class TestReinforcementLearner:
    def test_discretize(self):
        state = discretize("local", 100.0, 0, 0.35)
        assert state.size_bucket == 4
        assert state.load_bucket == 3

    def test_update_moves_toward_reward(self):
        learner = ReinforcementLearner(learning_rate=0.5, rng=np.random.default_rng(0))
        state = discretize("local", 10.0, 0, 0.2)
        assert learner.update(state, PlacementAction.STAY, 1.0) == pytest.approx(0.5)
        assert learner.best_action(state) == PlacementAction.STAY
        learner.update(state, PlacementAction.MOVE_TO_EDGE, 4.0)
        assert learner.best_action(state) == PlacementAction.MOVE_TO_EDGE

    def test_epsilon_decays(self):
        learner = ReinforcementLearner(epsilon=0.1, epsilon_decay=0.5, min_epsilon=0.02)
        state = discretize("local", 10.0, 0, 0.2)
        for _ in range(5):
            learner.update(state, PlacementAction.STAY, 0.0)
        assert learner.epsilon == pytest.approx(0.02)

    def test_q_value_and_export_policy(self):
        learner = ReinforcementLearner(learning_rate=0.5, rng=np.random.default_rng(0))
        state = discretize("local", 10.0, 0, 0.2)
        assert learner.q_value(state, PlacementAction.STAY) == 0.0
        learner.update(state, PlacementAction.MOVE_TO_EDGE, 2.0)
        assert learner.q_value(state, PlacementAction.MOVE_TO_EDGE) == pytest.approx(1.0)
        assert learner.export_policy() == {
            state.key(): {"action": PlacementAction.MOVE_TO_EDGE.value, "q": 1.0},
        }

    def test_compute_reward_sla_penalty(self):
        assert compute_reward(0.5, 1.0, sla_met=False, sla_penalty=1.0) == pytest.approx(-0.5)
