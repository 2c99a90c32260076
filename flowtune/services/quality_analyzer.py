"""Gameplay quality and emotional proxies (engagement, frustration, flow)."""

from dataclasses import dataclass
from typing import Optional, Sequence
import logging
import time

import numpy as np

from .metrics import DifficultyMetrics, GameplayMetrics, PlayerSkillMetrics, clamp
from .telemetry import ActionTelemetry, AdaptationRecord, PerformanceRecord, SessionMetrics

logger = logging.getLogger(__name__)


@dataclass
class QualityAnalyzerConfig:
    win_outcome_threshold: float = 0.7
    win_rate_games: int = 20
    duration_games: int = 10
    decision_time_actions: int = 20
    error_rate_actions: int = 50
    optimal_rate_actions: int = 30
    risk_actions: int = 20
    adaptation_lookback_s: float = 600.0
    # Normalisers for engagement and frustration factors
    engaged_session_s: float = 3600.0
    engaged_actions_per_minute: float = 5.0
    failure_streak_cap: int = 5
    hesitation_ms: float = 30000.0
    suboptimal_streak_cap: int = 10
    flow_band: tuple = (0.6, 0.9)


class GameplayQualityAnalyzer:
    """Computes GameplayMetrics from recent actions and game history."""

    def __init__(self, config: Optional[QualityAnalyzerConfig] = None):
        self.config = config or QualityAnalyzerConfig()

    def analyze_quality(
        self,
        player_id: str,
        window: Sequence[ActionTelemetry],
        history: Sequence[PerformanceRecord] = (),
        session_metrics: Optional[SessionMetrics] = None,
        skill: Optional[PlayerSkillMetrics] = None,
        difficulty: Optional[DifficultyMetrics] = None,
        adaptations: Sequence[AdaptationRecord] = (),
        now: Optional[float] = None,
    ) -> GameplayMetrics:
        """Analyse gameplay quality.

        Args:
            player_id: Player being analysed
            window: Recent actions, oldest first. The error, optimal-move and
                decision-time facets look at up to 50 of them.
            history: Finished games, oldest first (capped at 100 upstream)
            session_metrics: Latest session measurements, if any
            skill: Current skill estimate, used for the flow indicator
            difficulty: Current difficulty, used for the flow indicator
            adaptations: Adaptation records for adaptation speed
            now: Reference time

        Returns:
            GameplayMetrics
        """
        now = time.time() if now is None else now
        actions = list(window)

        metrics = GameplayMetrics(
            win_rate=self._win_rate(history),
            average_game_duration=self._average_game_duration(history),
            average_decision_time=self._average_decision_time(actions),
            error_rate=self._error_rate(actions),
            optimal_move_rate=self._optimal_move_rate(actions),
            risk_taking_behavior=self._risk_taking(actions),
            adaptation_speed=self._adaptation_speed(adaptations, now),
            engagement_level=self._engagement(actions, session_metrics),
            frustration_level=self._frustration(actions),
            flow_state_indicator=self._flow_indicator(skill, difficulty),
        )
        logger.debug(
            f"Quality for {player_id}: engagement={metrics.engagement_level:.2f} "
            f"frustration={metrics.frustration_level:.2f} errors={metrics.error_rate:.2f}"
        )
        return metrics

    def _win_rate(self, history: Sequence[PerformanceRecord]) -> float:
        recent = list(history)[-self.config.win_rate_games:]
        if not recent:
            return 0.5
        wins = sum(1 for r in recent if r.outcome_quality > self.config.win_outcome_threshold)
        return wins / len(recent)

    def _average_game_duration(self, history: Sequence[PerformanceRecord]) -> float:
        recent = list(history)[-self.config.duration_games:]
        if not recent:
            return 1800.0
        return float(np.mean([r.game_duration for r in recent]))

    def _average_decision_time(self, actions: Sequence[ActionTelemetry]) -> float:
        recent = actions[-self.config.decision_time_actions:]
        times = [a.decision_time_ms for a in recent if a.decision_time_ms is not None]
        if not times:
            return 5000.0
        return float(np.mean(times))

    def _error_rate(self, actions: Sequence[ActionTelemetry]) -> float:
        recent = actions[-self.config.error_rate_actions:]
        if not recent:
            return 0.1
        return sum(1 for a in recent if a.is_error) / len(recent)

    def _optimal_move_rate(self, actions: Sequence[ActionTelemetry]) -> float:
        recent = actions[-self.config.optimal_rate_actions:]
        if not recent:
            return 0.5
        return sum(1 for a in recent if a.is_optimal) / len(recent)

    def _risk_taking(self, actions: Sequence[ActionTelemetry]) -> float:
        risks = [a.risk_level for a in actions[-self.config.risk_actions:] if a.risk_level is not None]
        if not risks:
            return 0.5
        return float(np.mean(risks))

    def _adaptation_speed(self, adaptations: Sequence[AdaptationRecord], now: float) -> float:
        recent = [a.speed for a in adaptations if now - a.timestamp < self.config.adaptation_lookback_s]
        if not recent:
            return 0.5
        return float(np.mean(recent))

    def _engagement(self, actions: Sequence[ActionTelemetry], session: Optional[SessionMetrics]) -> float:
        if session is None or session.session_duration <= 0:
            return 0.5
        cfg = self.config
        apm = session.actions_per_minute
        if apm is None:
            apm = len(actions) / (session.session_duration / 60.0)
        active_ratio = 1 - session.idle_time / session.session_duration
        factors = [
            min(1.0, session.session_duration / cfg.engaged_session_s),
            min(1.0, apm / cfg.engaged_actions_per_minute),
            min(1.0, max(0.0, active_ratio)),
            min(1.0, session.feature_usage_rate),
        ]
        return clamp(float(np.mean(factors)))

    def _frustration(self, actions: Sequence[ActionTelemetry]) -> float:
        if not actions:
            return 0.0
        cfg = self.config
        failure_streak = self._trailing_streak(actions, lambda a: bool(a.is_error))
        suboptimal_streak = self._trailing_streak(actions, lambda a: a.is_optimal is False)
        undo_rate = sum(1 for a in actions if a.type == 'undo') / len(actions)
        times = [a.decision_time_ms for a in actions if a.decision_time_ms is not None]
        hesitation = float(np.mean(times)) / cfg.hesitation_ms if times else 0.0
        factors = [
            min(1.0, failure_streak / cfg.failure_streak_cap),
            min(1.0, undo_rate),
            min(1.0, hesitation),
            min(1.0, suboptimal_streak / cfg.suboptimal_streak_cap),
        ]
        return clamp(float(np.mean(factors)))

    @staticmethod
    def _trailing_streak(actions: Sequence[ActionTelemetry], predicate) -> int:
        streak = 0
        for action in reversed(actions):
            if not predicate(action):
                break
            streak += 1
        return streak

    def _flow_indicator(self, skill: Optional[PlayerSkillMetrics],
                        difficulty: Optional[DifficultyMetrics]) -> float:
        if skill is None or difficulty is None:
            return 0.5
        challenge = difficulty.overall_difficulty
        level = skill.overall_skill_level
        low, high = self.config.flow_band
        balance = 1 - abs(challenge - level)
        if low <= challenge <= high and low <= level <= high:
            return max(0.5, balance)
        return max(0.0, 0.5 - abs(challenge - level) * 0.5)
