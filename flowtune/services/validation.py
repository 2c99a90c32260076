"""Post-adjustment validation and the heuristic prediction models it feeds."""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple
import logging

import numpy as np

from .metrics import (
    DIFFICULTY_KNOBS, DifficultyMetrics, DifficultyTransition, GameplayMetrics,
    ImpactDeltas, PlayerReaction, PlayerSkillMetrics, WeightsConfig,
    DEFAULT_WEIGHTS, clamp,
)
from .scheduler import TimerHandle

logger = logging.getLogger(__name__)


SUCCESS_TOLERANCE = 0.3
RETENTION_BASELINE = 0.7
RETENTION_FLOOR = -0.1


@dataclass
class PendingValidation:
    transition: DifficultyTransition
    baseline: GameplayMetrics
    handle: Optional[TimerHandle] = None


class ValidationTracker:
    """Remembers what each transition looked like before it was applied."""

    def __init__(self):
        self._pending: Dict[str, PendingValidation] = {}

    def track(self, transition: DifficultyTransition, baseline: GameplayMetrics,
              handle: Optional[TimerHandle] = None) -> PendingValidation:
        pending = PendingValidation(transition=transition, baseline=baseline, handle=handle)
        self._pending[transition.id] = pending
        return pending

    def pop(self, transition_id: str) -> Optional[PendingValidation]:
        return self._pending.pop(transition_id, None)

    def pending_for(self, player_id: str) -> List[PendingValidation]:
        return [p for p in self._pending.values() if p.transition.player_id == player_id]

    def drop_player(self, player_id: str) -> int:
        ids = [tid for tid, p in self._pending.items() if p.transition.player_id == player_id]
        for tid in ids:
            pending = self._pending.pop(tid)
            if pending.handle is not None:
                pending.handle.cancel()
        return len(ids)

    def __len__(self) -> int:
        return len(self._pending)


def measure_reaction(baseline: GameplayMetrics, current: GameplayMetrics,
                     elapsed_s: float, validation_period_s: float) -> PlayerReaction:
    """Build a PlayerReaction from before/after gameplay measurements."""
    engagement_change = current.engagement_level - baseline.engagement_level
    frustration_change = current.frustration_level - baseline.frustration_level
    performance_change = current.optimal_move_rate - baseline.optimal_move_rate
    return PlayerReaction(
        satisfaction_change=(engagement_change - frustration_change) / 2,
        engagement_change=engagement_change,
        frustration_change=frustration_change,
        performance_change=performance_change,
        retention_likelihood=clamp(RETENTION_BASELINE + engagement_change * 0.5 - frustration_change * 0.5),
        adaptation_time=min(elapsed_s, validation_period_s),
    )


def actual_impact(reaction: PlayerReaction) -> ImpactDeltas:
    return ImpactDeltas(
        engagement=reaction.engagement_change,
        frustration=reaction.frustration_change,
        flow=(reaction.engagement_change - reaction.frustration_change) * 0.5,
        retention=reaction.retention_likelihood - RETENTION_BASELINE,
    )


def evaluate_success(expected: ImpactDeltas, actual: Optional[ImpactDeltas]) -> bool:
    if actual is None:
        return False
    return (
        abs(actual.engagement - expected.engagement) < SUCCESS_TOLERANCE
        and abs(actual.frustration - expected.frustration) < SUCCESS_TOLERANCE
        and actual.retention > RETENTION_FLOOR
    )


class SkillProgressionPredictor:
    """Linear trend over recent overall-skill observations."""

    def __init__(self, max_samples: int = 50):
        self.max_samples = max_samples
        self._samples: Dict[str, Deque[Tuple[float, float]]] = {}

    def observe(self, player_id: str, skill: PlayerSkillMetrics, timestamp: float):
        samples = self._samples.setdefault(player_id, deque(maxlen=self.max_samples))
        samples.append((timestamp, skill.overall_skill_level))

    def predict(self, player_id: str, horizon_s: float) -> float:
        samples = self._samples.get(player_id)
        if not samples:
            return 0.5
        latest = samples[-1][1]
        if len(samples) < 3:
            return latest
        t = np.array([s[0] for s in samples])
        y = np.array([s[1] for s in samples])
        if t.max() == t.min():
            return latest
        slope = float(np.polyfit(t - t[0], y, 1)[0])
        return clamp(latest + slope * horizon_s)

    def forget(self, player_id: str):
        self._samples.pop(player_id, None)


class EngagementPredictor:
    """How engagement responds to a change in overall difficulty."""

    def __init__(self, learning_rate: float = 0.3):
        self.learning_rate = learning_rate
        self._sensitivity: Dict[str, float] = {}

    def learn(self, transition: DifficultyTransition):
        if transition.actual_impact is None:
            return
        delta = transition.to_difficulty.overall_difficulty - transition.from_difficulty.overall_difficulty
        if abs(delta) < 1e-6:
            return
        observed = transition.actual_impact.engagement / delta
        previous = self._sensitivity.get(transition.player_id, 0.0)
        self._sensitivity[transition.player_id] = previous + (observed - previous) * self.learning_rate

    def predict(self, player_id: str, difficulty_delta: float, baseline: float = 0.5) -> float:
        return clamp(baseline + self._sensitivity.get(player_id, 0.0) * difficulty_delta)

    def forget(self, player_id: str):
        self._sensitivity.pop(player_id, None)


class DifficultyResponsePredictor:
    """Maps a skill level to a difficulty profile, biased by what worked."""

    KNOB_RESPONSE = {
        "ai_aggressiveness": 0.9,
        "ai_skill_level": 1.0,
        "game_complexity": 0.8,
        "time_pressure": 0.7,
        "resource_scarcity": 0.8,
        "market_volatility": 0.6,
        "random_event_frequency": 0.5,
        "competition_intensity": 0.9,
    }

    def __init__(self, weights: WeightsConfig = DEFAULT_WEIGHTS, learning_rate: float = 0.2):
        self.weights = weights
        self.learning_rate = learning_rate
        self._bias: Dict[str, float] = {}
        self._observations: Dict[str, int] = {}

    def learn(self, transition: DifficultyTransition):
        player_id = transition.player_id
        self._observations[player_id] = self._observations.get(player_id, 0) + 1
        delta = transition.to_difficulty.overall_difficulty - transition.from_difficulty.overall_difficulty
        # Successful moves pull the bias their way, failed ones push it back
        signal = delta if transition.success else -delta
        previous = self._bias.get(player_id, 0.0)
        self._bias[player_id] = clamp(previous + signal * self.learning_rate, -0.2, 0.2)

    def observations(self, player_id: str) -> int:
        return self._observations.get(player_id, 0)

    def predict(self, player_id: str, skill_level: float) -> DifficultyMetrics:
        base = skill_level + self._bias.get(player_id, 0.0)
        return DifficultyMetrics(
            weights=self.weights,
            **{knob: clamp(base * self.KNOB_RESPONSE[knob]) for knob in DIFFICULTY_KNOBS},
        )

    def forget(self, player_id: str):
        self._bias.pop(player_id, None)
        self._observations.pop(player_id, None)


@dataclass
class AlternativeScenario:
    name: str
    difficulty: DifficultyMetrics
    probability: float


@dataclass
class DifficultyPrediction:
    player_id: str
    horizon_s: float
    predicted_skill: float
    recommended_difficulty: DifficultyMetrics
    confidence: float
    alternatives: List[AlternativeScenario] = field(default_factory=list)


class PredictionModels:
    """Bundle of heuristic predictors fed by validated transitions."""

    # name, skill multiplier, base probability
    ALTERNATIVES = (
        ("conservative", 0.8, 0.3),
        ("aggressive", 1.2, 0.2),
    )

    def __init__(self, weights: WeightsConfig = DEFAULT_WEIGHTS):
        self.skill = SkillProgressionPredictor()
        self.engagement = EngagementPredictor()
        self.response = DifficultyResponsePredictor(weights)

    def learn(self, transition: DifficultyTransition):
        for model in (self.engagement, self.response):
            model.learn(transition)

    def predict_optimal_difficulty(self, player_id: str, horizon_s: float = 300.0,
                                   history_size: Optional[int] = None) -> DifficultyPrediction:
        """Recommended difficulty for the player's projected skill.

        Confidence grows with `history_size` (the player's transition count,
        falling back to validated observations) and decays with the horizon.
        Alternative probabilities are scaled by the engagement each one is
        expected to produce relative to the recommendation.
        """
        predicted_skill = self.skill.predict(player_id, horizon_s)
        if history_size is None:
            history_size = self.response.observations(player_id)
        history_factor = min(1.0, history_size / 10)
        horizon_factor = max(0.3, 1 - horizon_s / 3600)
        recommended = self.response.predict(player_id, predicted_skill)
        alternatives = []
        for name, skill_factor, base_probability in self.ALTERNATIVES:
            difficulty = self.response.predict(player_id, predicted_skill * skill_factor)
            engagement = self.engagement.predict(
                player_id, difficulty.overall_difficulty - recommended.overall_difficulty,
            )
            alternatives.append(AlternativeScenario(
                name, difficulty, clamp(base_probability * (0.5 + engagement)),
            ))
        return DifficultyPrediction(
            player_id=player_id,
            horizon_s=horizon_s,
            predicted_skill=predicted_skill,
            recommended_difficulty=recommended,
            confidence=history_factor * horizon_factor,
            alternatives=alternatives,
        )

    def forget(self, player_id: str):
        self.skill.forget(player_id)
        self.engagement.forget(player_id)
        self.response.forget(player_id)
