"""Difficulty gap analysis and adjustment recommendations."""

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging

from .metrics import (
    AdjustmentDirection, AdjustmentPriority, AdjustmentRecommendation,
    DifficultyMetrics, GameplayMetrics, ImpactDeltas, PlayerSkillMetrics,
    WeightsConfig, DEFAULT_WEIGHTS, clamp,
)

logger = logging.getLogger(__name__)


@dataclass
class GapAnalyzerConfig:
    maintain_threshold: float = 0.1
    critical_threshold: float = 0.5
    high_threshold: float = 0.3
    confidence_data_points: int = 20
    minimum_confidence: float = 0.3
    target_floor: float = 0.1


@dataclass
class GapAnalysis:
    gap: float
    recommendation: AdjustmentRecommendation
    confidence: float


class DifficultyGapAnalyzer:
    """Compares challenge against ability and proposes a correction.

    A positive gap means the game is harder than the player can handle.
    """

    def __init__(self, config: Optional[GapAnalyzerConfig] = None,
                 weights: WeightsConfig = DEFAULT_WEIGHTS):
        self.config = config or GapAnalyzerConfig()
        self.weights = weights

    def calculate_gap(self, skill: PlayerSkillMetrics, difficulty: DifficultyMetrics,
                      quality: GameplayMetrics) -> float:
        w = self.weights
        gap = (
            difficulty.overall_difficulty - skill.overall_skill_level
            + quality.frustration_level * w.frustration_penalty
            + (quality.engagement_level - 0.5) * w.engagement_bonus
        )
        if quality.flow_state_indicator > w.flow_dampening_threshold:
            gap *= w.flow_dampening
        return clamp(gap, -1.0, 1.0)

    def analyze(
        self,
        player_id: str,
        skill: PlayerSkillMetrics,
        difficulty: DifficultyMetrics,
        quality: GameplayMetrics,
        data_points: int,
    ) -> GapAnalysis:
        gap = self.calculate_gap(skill, difficulty, quality)
        recommendation = self.recommend(gap, difficulty, quality)
        confidence = self.confidence(data_points, quality)
        logger.debug(
            f"Gap for {player_id}: {gap:+.3f} -> {recommendation.direction.value} "
            f"({recommendation.priority.value}, confidence {confidence:.2f})"
        )
        return GapAnalysis(gap=gap, recommendation=recommendation, confidence=confidence)

    def recommend(self, gap: float, difficulty: DifficultyMetrics,
                  quality: GameplayMetrics) -> AdjustmentRecommendation:
        cfg = self.config
        magnitude = abs(gap)

        if magnitude < cfg.maintain_threshold:
            return AdjustmentRecommendation(
                direction=AdjustmentDirection.MAINTAIN,
                magnitude=0.0,
                priority=AdjustmentPriority.LOW,
                reasoning=["Difficulty is well matched to the player"],
            )

        direction = AdjustmentDirection.DECREASE if gap > 0 else AdjustmentDirection.INCREASE
        if magnitude > cfg.critical_threshold:
            priority = AdjustmentPriority.CRITICAL
        elif magnitude > cfg.high_threshold:
            priority = AdjustmentPriority.HIGH
        else:
            priority = AdjustmentPriority.MEDIUM

        return AdjustmentRecommendation(
            direction=direction,
            magnitude=magnitude,
            priority=priority,
            target_metrics=self._target_metrics(difficulty, direction, magnitude),
            reasoning=self._reasoning(quality, direction),
            expected_impact=self._expected_impact(direction, magnitude),
        )

    def _target_metrics(self, difficulty: DifficultyMetrics, direction: AdjustmentDirection,
                        magnitude: float) -> Dict[str, float]:
        sign = 1.0 if direction == AdjustmentDirection.INCREASE else -1.0
        targets = {}
        for knob, share in self.weights.target_shares.items():
            current = getattr(difficulty, knob)
            targets[knob] = clamp(current + sign * magnitude * share, self.config.target_floor, 1.0)
        return targets

    @staticmethod
    def _reasoning(quality: GameplayMetrics, direction: AdjustmentDirection) -> List[str]:
        reasons = []
        if quality.frustration_level > 0.6:
            reasons.append("Player frustration is elevated")
        if quality.engagement_level < 0.4:
            reasons.append("Player engagement is low")
        if quality.error_rate > 0.3:
            reasons.append("Error rate is high")
        if quality.flow_state_indicator < 0.3:
            reasons.append("Player is out of the flow channel")
        if quality.flow_state_indicator > 0.8:
            reasons.append("Player is in a strong flow state")
        if not reasons:
            if direction == AdjustmentDirection.INCREASE:
                reasons.append("Player skill exceeds the current challenge")
            else:
                reasons.append("Current challenge exceeds player skill")
        return reasons

    @staticmethod
    def _expected_impact(direction: AdjustmentDirection, magnitude: float) -> ImpactDeltas:
        base = magnitude * 0.5
        if direction == AdjustmentDirection.INCREASE:
            return ImpactDeltas(engagement=base, frustration=base * 0.3,
                                flow=base * 0.7, retention=base * 0.4)
        return ImpactDeltas(engagement=-base * 0.3, frustration=-base,
                            flow=base * 0.5, retention=base * 0.6)

    def confidence(self, data_points: int, quality: GameplayMetrics) -> float:
        cfg = self.config
        confidence = min(1.0, data_points / cfg.confidence_data_points)
        if quality.flow_state_indicator > 0.8 or quality.flow_state_indicator < 0.2:
            confidence *= 1.2
        if quality.engagement_level > 0.8:
            confidence *= 1.1
        return clamp(confidence, cfg.minimum_confidence, 1.0)
