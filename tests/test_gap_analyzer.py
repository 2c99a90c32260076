"""Tests for gap_analyzer.py"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flowtune.services.gap_analyzer import DifficultyGapAnalyzer
from flowtune.services.metrics import (
    AdjustmentDirection, AdjustmentPriority, DifficultyMetrics, GameplayMetrics,
    PlayerSkillMetrics, DIFFICULTY_KNOBS, SKILL_FACETS,
)


def skill_at(value):
    return PlayerSkillMetrics(**{name: value for name in SKILL_FACETS})


def difficulty_at(value):
    return DifficultyMetrics(**{knob: value for knob in DIFFICULTY_KNOBS})


class TestGapCalculation:
    """Tests for the signed gap."""

    def test_hard_game_weak_player_gives_positive_gap(self):
        analyzer = DifficultyGapAnalyzer()
        quality = GameplayMetrics(frustration_level=0.0, engagement_level=0.5, flow_state_indicator=0.3)
        gap = analyzer.calculate_gap(skill_at(0.3), difficulty_at(0.8), quality)
        assert gap == pytest.approx(0.5)

    def test_easy_game_strong_player_gives_negative_gap(self):
        analyzer = DifficultyGapAnalyzer()
        quality = GameplayMetrics(frustration_level=0.0, engagement_level=0.5, flow_state_indicator=0.3)
        gap = analyzer.calculate_gap(skill_at(0.9), difficulty_at(0.4), quality)
        assert gap == pytest.approx(-0.5)

    def test_frustration_and_engagement_terms(self):
        analyzer = DifficultyGapAnalyzer()
        quality = GameplayMetrics(frustration_level=0.4, engagement_level=0.9, flow_state_indicator=0.3)
        gap = analyzer.calculate_gap(skill_at(0.5), difficulty_at(0.5), quality)
        assert gap == pytest.approx(0.4 * -0.5 + 0.4 * 0.3)

    def test_high_flow_dampens_gap(self):
        analyzer = DifficultyGapAnalyzer()
        quality = GameplayMetrics(frustration_level=0.0, engagement_level=0.5, flow_state_indicator=0.9)
        gap = analyzer.calculate_gap(skill_at(0.3), difficulty_at(0.6), quality)
        assert gap == pytest.approx(0.3 * 0.7)

    def test_gap_is_clamped(self):
        analyzer = DifficultyGapAnalyzer()
        quality = GameplayMetrics(frustration_level=0.0, engagement_level=1.0, flow_state_indicator=0.3)
        gap = analyzer.calculate_gap(skill_at(0.0), difficulty_at(1.0), quality)
        assert gap == 1.0


class TestRecommendations:
    """Tests for direction, priority and targets."""

    def test_decrease_with_high_priority(self):
        analyzer = DifficultyGapAnalyzer()
        quality = GameplayMetrics(frustration_level=0.0, engagement_level=0.5, flow_state_indicator=0.3)
        analysis = analyzer.analyze("p1", skill_at(0.35), difficulty_at(0.8), quality, data_points=20)
        rec = analysis.recommendation
        assert rec.direction == AdjustmentDirection.DECREASE
        assert rec.priority == AdjustmentPriority.HIGH
        assert rec.magnitude == pytest.approx(0.45)
        for knob, target in rec.target_metrics.items():
            assert target < getattr(difficulty_at(0.8), knob)

    def test_small_gap_is_maintain(self):
        rec = DifficultyGapAnalyzer().recommend(0.05, difficulty_at(0.5), GameplayMetrics())
        assert rec.direction == AdjustmentDirection.MAINTAIN
        assert rec.magnitude == 0.0
        assert rec.priority == AdjustmentPriority.LOW

    def test_critical_priority(self):
        rec = DifficultyGapAnalyzer().recommend(-0.7, difficulty_at(0.5), GameplayMetrics())
        assert rec.direction == AdjustmentDirection.INCREASE
        assert rec.priority == AdjustmentPriority.CRITICAL

    def test_medium_priority(self):
        rec = DifficultyGapAnalyzer().recommend(0.2, difficulty_at(0.5), GameplayMetrics())
        assert rec.priority == AdjustmentPriority.MEDIUM

    def test_targets_respect_floor(self):
        rec = DifficultyGapAnalyzer().recommend(0.9, difficulty_at(0.15), GameplayMetrics())
        assert all(v >= 0.1 for v in rec.target_metrics.values())

    def test_reasoning_is_never_empty(self):
        rec = DifficultyGapAnalyzer().recommend(-0.2, difficulty_at(0.5), GameplayMetrics(flow_state_indicator=0.5))
        assert rec.reasoning


class TestConfidence:
    """Tests for recommendation confidence."""

    def test_grows_with_data(self):
        analyzer = DifficultyGapAnalyzer()
        quality = GameplayMetrics(flow_state_indicator=0.5, engagement_level=0.5)
        assert analyzer.confidence(10, quality) == pytest.approx(0.5)
        assert analyzer.confidence(40, quality) == 1.0

    def test_floor(self):
        quality = GameplayMetrics(flow_state_indicator=0.5, engagement_level=0.5)
        assert DifficultyGapAnalyzer().confidence(1, quality) == pytest.approx(0.3)

    def test_extreme_flow_boosts_confidence(self):
        quality = GameplayMetrics(flow_state_indicator=0.1, engagement_level=0.5)
        assert DifficultyGapAnalyzer().confidence(10, quality) == pytest.approx(0.6)

    def test_never_above_one(self):
        quality = GameplayMetrics(flow_state_indicator=0.95, engagement_level=0.95)
        assert DifficultyGapAnalyzer().confidence(20, quality) == 1.0
