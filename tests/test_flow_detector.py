"""Tests for flow_detector.py"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flowtune.services.flow_detector import (
    FlowDetectionConfig, FlowIndicators, FlowPhase, FlowQuality, FlowStateDetector,
    TrendDirection, compute_trends, determine_phase,
)
from flowtune.services.metrics import DifficultyMetrics, GameplayMetrics, PlayerSkillMetrics


def feed(detector, player_id, scores, start=0.0):
    results = []
    for i, score in enumerate(scores):
        results.append(detector.synthesize(player_id, FlowIndicators.uniform(score), now=start + i * 30))
    return results


class TestPhaseStateMachine:
    """Tests for determine_phase."""

    def test_entering_maintaining_declining(self):
        detector = FlowStateDetector()
        phases = [m.flow_phase for m in feed(detector, "p1", [0.9, 0.85, 0.6])]
        assert phases == [FlowPhase.ENTERING, FlowPhase.MAINTAINING, FlowPhase.DECLINING]

    def test_low_score_is_lost(self):
        config = FlowDetectionConfig()
        assert determine_phase(0.2, None, config) == FlowPhase.LOST
        assert determine_phase(0.25, 0.7, config) == FlowPhase.LOST

    def test_rising_into_maintaining_band_is_entering(self):
        assert determine_phase(0.6, 0.35, FlowDetectionConfig()) == FlowPhase.ENTERING

    def test_falling_inside_low_band_is_declining(self):
        assert determine_phase(0.32, 0.38, FlowDetectionConfig()) == FlowPhase.DECLINING


class TestFlowTracking:
    """History, stability, duration and quality."""

    def test_uniform_indicators_score_is_the_value(self):
        detector = FlowStateDetector()
        assert detector.flow_score(FlowIndicators.uniform(0.42)) == pytest.approx(0.42)

    def test_history_is_capped(self):
        detector = FlowStateDetector(FlowDetectionConfig(historical_data_window=5))
        feed(detector, "p1", [0.5] * 12)
        assert len(detector.get_flow_history("p1")) == 5

    def test_stability_default_until_three_samples(self):
        detector = FlowStateDetector()
        results = feed(detector, "p1", [0.6, 0.6, 0.6, 0.6])
        assert results[2].flow_stability == 0.5
        assert results[3].flow_stability == pytest.approx(1.0)

    def test_duration_counts_ticks_in_flow(self):
        detector = FlowStateDetector()
        results = feed(detector, "p1", [0.2, 0.6, 0.7, 0.8])
        assert results[0].flow_duration == 0.0
        assert results[3].flow_duration == pytest.approx(90.0)

    def test_quality_tiers(self):
        detector = FlowStateDetector()
        assert feed(detector, "a", [0.9])[0].flow_quality == FlowQuality.OPTIMAL
        assert feed(detector, "b", [0.65])[0].flow_quality == FlowQuality.DEEP
        assert feed(detector, "c", [0.45])[0].flow_quality == FlowQuality.MODERATE
        assert feed(detector, "d", [0.2])[0].flow_quality == FlowQuality.SHALLOW

    def test_summary_model_after_five_samples(self):
        detector = FlowStateDetector()
        feed(detector, "p1", [0.4, 0.5, 0.6, 0.7])
        assert detector.summary_model("p1") is None
        feed(detector, "p1", [0.8], start=200)
        model = detector.summary_model("p1")
        assert model.average_flow == pytest.approx(0.6)
        assert model.trend_coefficient == pytest.approx(0.1)

    def test_detect_from_gameplay(self):
        detector = FlowStateDetector()
        detector.start_detection("p1", now=0.0)
        assert detector.due_players(now=0.0) == ["p1"]
        metrics = detector.detect("p1", PlayerSkillMetrics(), DifficultyMetrics(), GameplayMetrics(), now=0.0)
        assert 0.0 <= metrics.overall_flow_score <= 1.0
        assert metrics.indicators.skill_challenge_balance == pytest.approx(1.0)
        assert detector.due_players(now=10.0) == []
        assert detector.due_players(now=30.0) == ["p1"]


class TestTrends:
    """Tests for compute_trends."""

    def test_improving(self):
        trends = compute_trends([0.3, 0.4, 0.5, 0.6])
        assert trends.direction == TrendDirection.IMPROVING
        assert trends.velocity == pytest.approx(0.1)
        assert trends.acceleration == pytest.approx(0.0)

    def test_small_changes_are_stable(self):
        assert compute_trends([0.5, 0.51, 0.5]).direction == TrendDirection.STABLE

    def test_single_sample(self):
        assert compute_trends([0.5]).direction == TrendDirection.STABLE


class TestFlowAnalysis:
    """Suggestions, predictions and insights."""

    def test_low_balance_suggests_difficulty_adjustment_first(self):
        detector = FlowStateDetector()
        indicators = FlowIndicators.uniform(0.3)
        metrics = detector.synthesize("p1", indicators, now=0)
        suggestions = detector.optimization_suggestions(metrics)
        assert suggestions[0].type == "difficulty_adjustment"
        assert [s.priority for s in suggestions] == sorted(
            [s.priority for s in suggestions], key=lambda p: {"high": 0, "medium": 1}[p])

    def test_no_suggestions_when_everything_is_high(self):
        detector = FlowStateDetector()
        metrics = detector.synthesize("p1", FlowIndicators.uniform(0.9), now=0)
        assert detector.optimization_suggestions(metrics) == []

    def test_predictions_project_the_trend(self):
        detector = FlowStateDetector()
        results = feed(detector, "p1", [0.5, 0.55, 0.6, 0.65])
        predictions = detector.predictions(results[-1])
        # Ten ticks of +0.05 over five minutes
        assert predictions.predicted_flow_5m == pytest.approx(1.0)
        assert "improving_flow" in predictions.opportunities

    def test_declining_phase_adds_preventative_measures(self):
        detector = FlowStateDetector()
        feed(detector, "p1", [0.9, 0.6])
        analysis = detector.analyze("p1")
        assert analysis.current.flow_phase == FlowPhase.DECLINING
        assert analysis.insights.preventative_measures

    def test_analyze_unknown_player(self):
        assert FlowStateDetector().analyze("nobody") is None

    def test_forget_drops_history(self):
        detector = FlowStateDetector()
        feed(detector, "p1", [0.5])
        detector.forget("p1")
        assert detector.get_flow_history("p1") == []
        assert detector.latest("p1") is None
