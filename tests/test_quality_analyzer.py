"""Tests for quality_analyzer.py"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flowtune.services.metrics import DifficultyMetrics, PlayerSkillMetrics
from flowtune.services.quality_analyzer import GameplayQualityAnalyzer
from flowtune.services.telemetry import ActionTelemetry, PerformanceRecord, SessionMetrics


def actions(n, **fields):
    base = {"type": "trade", "decision_time_ms": 3000, "is_optimal": True, "is_error": False}
    base.update(fields)
    return [ActionTelemetry.from_dict(dict(base, timestamp=1000.0 + i)) for i in range(n)]


class TestQualityDefaults:
    """Missing inputs fall back to documented defaults."""

    def test_empty_inputs(self):
        quality = GameplayQualityAnalyzer().analyze_quality("p1", [])
        assert quality.win_rate == 0.5
        assert quality.average_game_duration == 1800.0
        assert quality.average_decision_time == 5000.0
        assert quality.error_rate == 0.1
        assert quality.engagement_level == 0.5
        assert quality.frustration_level == 0.0
        assert quality.flow_state_indicator == 0.5


class TestQualityFacets:
    """Tests for individual quality facets."""

    def test_win_rate_uses_outcome_threshold(self):
        history = [
            PerformanceRecord(timestamp=i, outcome_quality=q, score=q, game_duration=900)
            for i, q in enumerate([0.9, 0.8, 0.5, 0.2])
        ]
        quality = GameplayQualityAnalyzer().analyze_quality("p1", actions(5), history=history)
        assert quality.win_rate == pytest.approx(0.5)
        assert quality.average_game_duration == pytest.approx(900)

    def test_error_rate(self):
        window = actions(6) + actions(4, is_error=True, is_optimal=False)
        quality = GameplayQualityAnalyzer().analyze_quality("p1", window)
        assert quality.error_rate == pytest.approx(0.4)
        assert quality.optimal_move_rate == pytest.approx(0.6)

    def test_engagement_factors(self):
        """Full hour, 5 apm, no idle time and full feature usage is maximal."""
        session = SessionMetrics(session_duration=3600, idle_time=0, feature_usage_rate=1.0,
                                 actions_per_minute=5)
        quality = GameplayQualityAnalyzer().analyze_quality("p1", actions(10), session_metrics=session)
        assert quality.engagement_level == pytest.approx(1.0)

    def test_engagement_derives_actions_per_minute(self):
        session = SessionMetrics(session_duration=3600, idle_time=60, feature_usage_rate=1.0)
        quality = GameplayQualityAnalyzer().analyze_quality("p1", actions(15, decision_time_ms=1500),
                                                            session_metrics=session)
        expected = (1.0 + 0.05 + (1 - 60 / 3600) + 1.0) / 4
        assert quality.engagement_level == pytest.approx(expected)

    def test_frustration_from_failure_streak(self):
        window = actions(5) + actions(10, is_error=True, is_optimal=False, decision_time_ms=30000)
        quality = GameplayQualityAnalyzer().analyze_quality("p1", window)
        hesitation = (5 * 3000 + 10 * 30000) / 15 / 30000
        assert quality.frustration_level == pytest.approx((1.0 + 0.0 + hesitation + 1.0) / 4)

    def test_undo_actions_raise_frustration(self):
        calm = GameplayQualityAnalyzer().analyze_quality("p1", actions(10))
        undo = actions(5) + actions(5, type="undo")
        frustrated = GameplayQualityAnalyzer().analyze_quality("p1", undo)
        assert frustrated.frustration_level > calm.frustration_level


class TestFlowIndicator:
    """Tests for the skill/challenge flow indicator."""

    def test_inside_flow_band(self):
        skill = PlayerSkillMetrics(**{name: 0.7 for name in (
            'decision_speed', 'strategic_thinking', 'risk_management', 'resource_optimization',
            'adaptability', 'game_knowledge', 'consistency_level', 'learning_rate')})
        difficulty = DifficultyMetrics(**{k: 0.7 for k in DifficultyMetrics().knobs()})
        quality = GameplayQualityAnalyzer().analyze_quality("p1", [], skill=skill, difficulty=difficulty)
        assert quality.flow_state_indicator == pytest.approx(1.0)

    def test_outside_flow_band(self):
        skill = PlayerSkillMetrics(**{name: 0.9 for name in (
            'decision_speed', 'strategic_thinking', 'risk_management', 'resource_optimization',
            'adaptability', 'game_knowledge', 'consistency_level', 'learning_rate')})
        difficulty = DifficultyMetrics()
        quality = GameplayQualityAnalyzer().analyze_quality("p1", [], skill=skill, difficulty=difficulty)
        assert quality.flow_state_indicator == pytest.approx(0.5 - 0.4 * 0.5)
