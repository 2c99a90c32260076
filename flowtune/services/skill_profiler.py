"""Skill inference from a window of action telemetry.

analyze_skill() is a pure function of the window, the player's performance
and adaptation history, and the carried-forward game knowledge. The carried
value only moves when record() is called, so re-analysing an unchanged
window returns the same metrics.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import time

import numpy as np

from .metrics import PlayerSkillMetrics, WeightsConfig, DEFAULT_WEIGHTS, clamp
from .telemetry import ActionTelemetry, AdaptationRecord, PerformanceRecord

logger = logging.getLogger(__name__)


@dataclass
class SkillProfilerConfig:
    decision_time_floor_ms: float = 1000.0
    decision_time_span_ms: float = 10000.0
    strategic_value_ratio: float = 1.2
    adaptation_lookback_s: float = 600.0
    minimum_consistency_samples: int = 3
    learning_rate_window: int = 5
    classification_threshold: float = 0.7


@dataclass
class PlayerBehaviorPattern:
    """Reference profile for a kind of player."""
    id: str
    name: str
    characteristics: Dict[str, float]
    typical_skill_range: Tuple[float, float]
    preferred_difficulty_range: Tuple[float, float]
    learning_curve: str


class SkillProfiler:
    """Turns recent actions into PlayerSkillMetrics."""

    BEHAVIOR_PATTERNS = {
        'novice': PlayerBehaviorPattern(
            id='novice', name='Novice Player',
            characteristics={'decision_speed': 0.3, 'strategic_thinking': 0.2, 'risk_management': 0.4,
                             'adaptability': 0.6, 'game_knowledge': 0.1},
            typical_skill_range=(0.0, 0.3), preferred_difficulty_range=(0.1, 0.4),
            learning_curve='steep',
        ),
        'casual': PlayerBehaviorPattern(
            id='casual', name='Casual Player',
            characteristics={'decision_speed': 0.5, 'strategic_thinking': 0.4, 'risk_management': 0.5,
                             'adaptability': 0.5, 'game_knowledge': 0.4},
            typical_skill_range=(0.2, 0.6), preferred_difficulty_range=(0.3, 0.6),
            learning_curve='moderate',
        ),
        'intermediate': PlayerBehaviorPattern(
            id='intermediate', name='Intermediate Player',
            characteristics={'decision_speed': 0.7, 'strategic_thinking': 0.6, 'risk_management': 0.6,
                             'adaptability': 0.7, 'game_knowledge': 0.6},
            typical_skill_range=(0.4, 0.7), preferred_difficulty_range=(0.5, 0.8),
            learning_curve='gradual',
        ),
        'advanced': PlayerBehaviorPattern(
            id='advanced', name='Advanced Player',
            characteristics={'decision_speed': 0.8, 'strategic_thinking': 0.8, 'risk_management': 0.7,
                             'adaptability': 0.8, 'game_knowledge': 0.8},
            typical_skill_range=(0.6, 0.9), preferred_difficulty_range=(0.7, 0.95),
            learning_curve='gradual',
        ),
        'expert': PlayerBehaviorPattern(
            id='expert', name='Expert Player',
            characteristics={'decision_speed': 0.9, 'strategic_thinking': 0.9, 'risk_management': 0.8,
                             'adaptability': 0.9, 'game_knowledge': 0.9},
            typical_skill_range=(0.8, 1.0), preferred_difficulty_range=(0.8, 1.0),
            learning_curve='plateau',
        ),
    }

    def __init__(self, config: Optional[SkillProfilerConfig] = None,
                 weights: WeightsConfig = DEFAULT_WEIGHTS):
        self.config = config or SkillProfilerConfig()
        self.weights = weights
        self._historical_knowledge: Dict[str, float] = {}
        self._last_metrics: Dict[str, PlayerSkillMetrics] = {}

    def analyze_skill(
        self,
        player_id: str,
        window: Sequence[ActionTelemetry],
        performance_history: Sequence[PerformanceRecord] = (),
        adaptations: Sequence[AdaptationRecord] = (),
        now: Optional[float] = None,
    ) -> PlayerSkillMetrics:
        """Infer skill facets from the most recent actions.

        Args:
            player_id: Player being analysed
            window: Recent actions, oldest first
            performance_history: Finished games, oldest first
            adaptations: Adaptation records used for the adaptability facet
            now: Reference time for the adaptation lookback

        Returns:
            PlayerSkillMetrics with every facet in [0, 1]
        """
        now = time.time() if now is None else now
        return PlayerSkillMetrics(
            decision_speed=self._decision_speed(window),
            strategic_thinking=self._strategic_thinking(window),
            risk_management=self._risk_management(window),
            resource_optimization=self._resource_optimization(window),
            adaptability=self._adaptability(adaptations, now),
            game_knowledge=self._game_knowledge(player_id, window),
            consistency_level=self._consistency(window),
            learning_rate=self._learning_rate(performance_history),
            weights=self.weights,
        )

    def record(self, player_id: str, metrics: PlayerSkillMetrics):
        """Carry game knowledge forward after a new batch has been analysed."""
        self._historical_knowledge[player_id] = metrics.game_knowledge
        self._last_metrics[player_id] = metrics

    def last_metrics(self, player_id: str) -> Optional[PlayerSkillMetrics]:
        return self._last_metrics.get(player_id)

    def forget(self, player_id: str):
        self._historical_knowledge.pop(player_id, None)
        self._last_metrics.pop(player_id, None)

    def _decision_speed(self, window: Sequence[ActionTelemetry]) -> float:
        times = [a.decision_time_ms for a in window if a.decision_time_ms is not None]
        if not times:
            return 0.5
        avg = float(np.mean(times))
        return clamp(1 - (avg - self.config.decision_time_floor_ms) / self.config.decision_time_span_ms)

    def _strategic_thinking(self, window: Sequence[ActionTelemetry]) -> float:
        valued = [a for a in window if a.immediate_value is not None and a.output_value is not None]
        if not valued:
            return 0.5
        strategic = sum(
            1 for a in valued
            if a.output_value >= a.immediate_value * self.config.strategic_value_ratio
        )
        return strategic / len(valued)

    def _risk_management(self, window: Sequence[ActionTelemetry]) -> float:
        risky = [a for a in window if a.risk_level is not None]
        if not risky:
            return 0.5
        scores = []
        for action in risky:
            optimal = 0.5 + ((action.potential_reward or 0.0) - (action.potential_loss or 0.0)) * 0.1
            optimal = clamp(optimal)
            scores.append(max(0.0, 1 - abs(action.risk_level - optimal)))
        return float(np.mean(scores))

    def _resource_optimization(self, window: Sequence[ActionTelemetry]) -> float:
        costed = [a for a in window if a.input_cost and a.input_cost > 0 and a.output_value is not None]
        if not costed:
            return 0.5
        return float(np.mean([clamp(a.output_value / a.input_cost) for a in costed]))

    def _adaptability(self, adaptations: Sequence[AdaptationRecord], now: float) -> float:
        recent = [a for a in adaptations if now - a.timestamp < self.config.adaptation_lookback_s]
        if not recent:
            return 0.5
        return float(np.mean([(a.speed + (1.0 if a.success else 0.0)) / 2 for a in recent]))

    def _game_knowledge(self, player_id: str, window: Sequence[ActionTelemetry]) -> float:
        historical = self._historical_knowledge.get(player_id, 0.5)
        judged = [a for a in window if a.is_optimal is not None]
        if not judged:
            return historical
        current = sum(1 for a in judged if a.is_optimal) / len(judged)
        w = self.weights.knowledge_history_weight
        return current * (1 - w) + historical * w

    def _consistency(self, window: Sequence[ActionTelemetry]) -> float:
        if len(window) < self.config.minimum_consistency_samples:
            return 0.5
        qualities = [a.quality for a in window]
        return max(0.0, 1 - float(np.var(qualities)))

    def _learning_rate(self, history: Sequence[PerformanceRecord]) -> float:
        if len(history) < 3:
            return 0.5
        n = self.config.learning_rate_window
        scores = [r.score for r in history]
        recent = scores[-n:]
        earlier = scores[-2 * n:-n]
        if not earlier:
            return 0.5
        improvement = float(np.mean(recent)) - float(np.mean(earlier))
        return clamp(0.5 + improvement)

    def classify_player_type(self, skill: PlayerSkillMetrics) -> str:
        """Closest behavior pattern id, or 'casual' when nothing matches well."""
        best_match, best_score = 'casual', 0.0
        for pattern_id, pattern in self.BEHAVIOR_PATTERNS.items():
            score = self._pattern_match_score(skill, pattern)
            if score > best_score:
                best_match, best_score = pattern_id, score
        if best_score > self.config.classification_threshold:
            return best_match
        return 'casual'

    @staticmethod
    def _pattern_match_score(skill: PlayerSkillMetrics, pattern: PlayerBehaviorPattern) -> float:
        scores: List[float] = [
            max(0.0, 1 - abs(getattr(skill, name) - expected))
            for name, expected in pattern.characteristics.items()
            if hasattr(skill, name)
        ]
        return float(np.mean(scores)) if scores else 0.0
