"""Flow state detection.

Every tick the detector turns skill, difficulty and gameplay quality into
nine flow indicators, a weighted flow score and a phase. Per-player history
is a ring buffer used for stability, duration, trends and projections.

Phases:
- entering: rising into a higher band, or first sample above the entry bar
- maintaining: holding in the top bands
- declining: dropped into a lower band, or sliding below the decline bar
- lost: below the entry bar
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Set
import logging
import time

import numpy as np

from .metrics import (
    DifficultyMetrics, GameplayMetrics, PlayerSkillMetrics, WeightsConfig,
    DEFAULT_WEIGHTS, clamp, clamp01,
)
from .telemetry import SessionMetrics

logger = logging.getLogger(__name__)


class FlowPhase(str, Enum):
    ENTERING = "entering"
    MAINTAINING = "maintaining"
    DECLINING = "declining"
    LOST = "lost"


class FlowQuality(str, Enum):
    SHALLOW = "shallow"
    MODERATE = "moderate"
    DEEP = "deep"
    OPTIMAL = "optimal"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass
class FlowDetectionConfig:
    detection_interval_s: float = 30.0
    historical_data_window: int = 20
    entering_threshold: float = 0.3
    maintaining_threshold: float = 0.5
    optimal_threshold: float = 0.8
    declining_threshold: float = 0.4
    trend_epsilon: float = 0.02
    stability_samples: int = 5
    # Defaults for indicators the game does not report directly
    clear_goals: float = 0.7
    immediate_feedback: float = 0.8
    fatigue_session_s: float = 3 * 3600.0


@dataclass
class ExperienceSnapshot:
    """Subjective-experience proxies, 0.5 when unknown."""
    engagement: float = 0.5
    distraction: float = 0.5
    focus: float = 0.5
    mental_fatigue: float = 0.5
    time_perception_distortion: float = 0.5
    immersion: float = 0.5
    enjoyment: float = 0.5
    curiosity: float = 0.5
    autonomy: float = 0.5
    mastery: float = 0.5
    purpose: float = 0.5
    anxiety: float = 0.5
    self_doubt: float = 0.5
    satisfaction: float = 0.5
    overwhelm: float = 0.0

    @classmethod
    def from_gameplay(
        cls,
        quality: GameplayMetrics,
        skill: PlayerSkillMetrics,
        difficulty: DifficultyMetrics,
        session: Optional[SessionMetrics] = None,
        config: Optional[FlowDetectionConfig] = None,
    ) -> "ExperienceSnapshot":
        """Derive experience proxies from measured play."""
        config = config or FlowDetectionConfig()
        distraction = 0.5
        fatigue = 0.5
        curiosity = 0.5
        if session is not None and session.session_duration > 0:
            distraction = clamp(session.idle_time / session.session_duration)
            fatigue = clamp(session.session_duration / config.fatigue_session_s)
            curiosity = clamp01(session.feature_usage_rate)
        enjoyment = (quality.engagement_level + (1 - quality.frustration_level)) / 2
        return cls(
            engagement=quality.engagement_level,
            distraction=distraction,
            focus=1 - quality.error_rate,
            mental_fatigue=fatigue,
            time_perception_distortion=1 - distraction,
            immersion=quality.engagement_level,
            enjoyment=enjoyment,
            curiosity=curiosity,
            autonomy=quality.risk_taking_behavior,
            mastery=skill.overall_skill_level,
            purpose=config.clear_goals,
            anxiety=quality.frustration_level,
            self_doubt=quality.error_rate,
            satisfaction=(quality.win_rate + quality.optimal_move_rate) / 2,
            overwhelm=max(0.0, difficulty.overall_difficulty - skill.overall_skill_level),
        )


@dataclass
class FlowIndicators:
    skill_challenge_balance: float = 0.5
    concentration_level: float = 0.5
    time_distortion: float = 0.5
    intrinsic_motivation: float = 0.5
    self_consciousness: float = 0.5
    autotelic_experience: float = 0.5
    control_sense: float = 0.5
    clear_goals: float = 0.5
    immediate_feedback: float = 0.5

    @classmethod
    def uniform(cls, value: float) -> "FlowIndicators":
        value = clamp01(value)
        return cls(**{name: value for name in cls.__dataclass_fields__})

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class FlowTrends:
    direction: TrendDirection = TrendDirection.STABLE
    velocity: float = 0.0
    acceleration: float = 0.0


@dataclass
class FlowStateMetrics:
    player_id: str
    timestamp: float
    indicators: FlowIndicators
    overall_flow_score: float
    flow_phase: FlowPhase
    flow_stability: float
    flow_duration: float  # seconds
    flow_quality: FlowQuality
    flow_trends: FlowTrends


@dataclass
class FlowOptimizationSuggestion:
    type: str
    priority: str
    description: str
    target_indicator: str
    expected_impact: float
    implementation_complexity: str
    time_to_effect: float  # seconds


@dataclass
class FlowPredictions:
    predicted_flow_5m: float
    predicted_flow_15m: float
    risk_factors: List[str] = field(default_factory=list)
    opportunities: List[str] = field(default_factory=list)


@dataclass
class ActionableInsights:
    immediate_actions: List[str] = field(default_factory=list)
    strategic_recommendations: List[str] = field(default_factory=list)
    preventative_measures: List[str] = field(default_factory=list)


@dataclass
class FlowAnalysis:
    current: FlowStateMetrics
    history: List[FlowStateMetrics]
    suggestions: List[FlowOptimizationSuggestion]
    predictions: FlowPredictions
    insights: ActionableInsights


@dataclass
class FlowSummaryModel:
    """Per-player rolling summary, available once 5 samples exist."""
    average_flow: float
    volatility: float
    trend_coefficient: float
    updated_at: float


_PRIORITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}


def determine_phase(score: float, previous: Optional[float], config: FlowDetectionConfig) -> FlowPhase:
    """Phase for a new score given the previous tick's score."""
    if previous is None:
        return FlowPhase.ENTERING if score >= config.entering_threshold else FlowPhase.LOST
    if score < config.entering_threshold:
        return FlowPhase.LOST

    def band(x: float) -> int:
        if x >= config.optimal_threshold:
            return 3
        if x >= config.maintaining_threshold:
            return 2
        if x >= config.entering_threshold:
            return 1
        return 0

    current_band, previous_band = band(score), band(previous)
    if current_band < previous_band:
        return FlowPhase.DECLINING
    if current_band == 3:
        return FlowPhase.MAINTAINING
    if current_band == 2:
        return FlowPhase.ENTERING if current_band > previous_band else FlowPhase.MAINTAINING
    if score < config.declining_threshold and score < previous:
        return FlowPhase.DECLINING
    return FlowPhase.ENTERING


def compute_trends(recent_scores: Sequence[float], epsilon: float = 0.02) -> FlowTrends:
    """Velocity and acceleration from first and second differences."""
    if len(recent_scores) < 2:
        return FlowTrends()
    values = np.asarray(recent_scores, dtype=float)
    first = np.diff(values)
    velocity = float(np.mean(first))
    acceleration = float(np.mean(np.diff(first))) if len(first) >= 2 else 0.0
    if velocity > epsilon:
        direction = TrendDirection.IMPROVING
    elif velocity < -epsilon:
        direction = TrendDirection.DECLINING
    else:
        direction = TrendDirection.STABLE
    return FlowTrends(direction=direction, velocity=velocity, acceleration=acceleration)


class FlowStateDetector:
    """Samples and tracks per-player flow state."""

    def __init__(self, config: Optional[FlowDetectionConfig] = None,
                 weights: WeightsConfig = DEFAULT_WEIGHTS):
        self.config = config or FlowDetectionConfig()
        self.weights = weights
        self._history: Dict[str, Deque[FlowStateMetrics]] = {}
        self._monitored: Set[str] = set()
        self._next_due: Dict[str, float] = {}
        self._models: Dict[str, FlowSummaryModel] = {}

    # Monitoring schedule

    def start_detection(self, player_id: str, now: Optional[float] = None):
        now = time.time() if now is None else now
        self._monitored.add(player_id)
        self._next_due[player_id] = now
        logger.info(f"Flow detection started for {player_id}")

    def stop_detection(self, player_id: str):
        self._monitored.discard(player_id)
        self._next_due.pop(player_id, None)

    def due_players(self, now: Optional[float] = None) -> List[str]:
        now = time.time() if now is None else now
        return [p for p in self._monitored if self._next_due.get(p, now) <= now]

    def forget(self, player_id: str):
        self.stop_detection(player_id)
        self._history.pop(player_id, None)
        self._models.pop(player_id, None)

    # Detection

    def detect(
        self,
        player_id: str,
        skill: PlayerSkillMetrics,
        difficulty: DifficultyMetrics,
        quality: GameplayMetrics,
        session: Optional[SessionMetrics] = None,
        experience: Optional[ExperienceSnapshot] = None,
        now: Optional[float] = None,
    ) -> FlowStateMetrics:
        """Take one flow sample for a player and record it."""
        now = time.time() if now is None else now
        if experience is None:
            experience = ExperienceSnapshot.from_gameplay(quality, skill, difficulty, session, self.config)
        indicators = self.calculate_indicators(skill, difficulty, experience)
        metrics = self.synthesize(player_id, indicators, now=now)
        if player_id in self._monitored:
            self._next_due[player_id] = now + self.config.detection_interval_s
        return metrics

    def calculate_indicators(self, skill: PlayerSkillMetrics, difficulty: DifficultyMetrics,
                             experience: ExperienceSnapshot) -> FlowIndicators:
        e = experience
        return FlowIndicators(
            skill_challenge_balance=clamp(1 - abs(skill.overall_skill_level - difficulty.overall_difficulty)),
            concentration_level=float(np.mean([e.engagement, 1 - e.distraction, e.focus, 1 - e.mental_fatigue])),
            time_distortion=(e.time_perception_distortion + e.immersion) / 2,
            intrinsic_motivation=float(np.mean([e.enjoyment, e.curiosity, e.autonomy, e.mastery, e.purpose])),
            self_consciousness=clamp(1 - (e.anxiety + e.self_doubt) / 2),
            autotelic_experience=(e.enjoyment + e.satisfaction) / 2,
            control_sense=float(np.mean([skill.consistency_level, e.satisfaction, 1 - e.overwhelm])),
            clear_goals=self.config.clear_goals,
            immediate_feedback=self.config.immediate_feedback,
        )

    def flow_score(self, indicators: FlowIndicators) -> float:
        weights = self.weights.flow_weights
        return clamp(sum(getattr(indicators, name) * w for name, w in weights.items()))

    def synthesize(self, player_id: str, indicators: FlowIndicators,
                   now: Optional[float] = None) -> FlowStateMetrics:
        """Score indicators against the player's history and append the sample."""
        now = time.time() if now is None else now
        history = self._history.setdefault(
            player_id, deque(maxlen=self.config.historical_data_window)
        )
        previous_scores = [m.overall_flow_score for m in history]
        score = self.flow_score(indicators)
        previous = previous_scores[-1] if previous_scores else None

        metrics = FlowStateMetrics(
            player_id=player_id,
            timestamp=now,
            indicators=indicators,
            overall_flow_score=score,
            flow_phase=determine_phase(score, previous, self.config),
            flow_stability=self._stability(previous_scores, score),
            flow_duration=self._duration(previous_scores, score),
            flow_quality=self._quality(score, indicators),
            flow_trends=compute_trends(previous_scores[-3:] + [score], self.config.trend_epsilon),
        )
        history.append(metrics)
        self._update_model(player_id, now)
        logger.debug(f"Flow for {player_id}: {score:.2f} ({metrics.flow_phase.value})")
        return metrics

    def _stability(self, previous_scores: List[float], score: float) -> float:
        if len(previous_scores) < 3:
            return 0.5
        recent = previous_scores[-self.config.stability_samples:] + [score]
        return clamp(1 - float(np.var(recent)))

    def _duration(self, previous_scores: List[float], score: float) -> float:
        threshold = self.config.maintaining_threshold
        if score < threshold:
            return 0.0
        ticks = 1
        for s in reversed(previous_scores):
            if s < threshold:
                break
            ticks += 1
        return ticks * self.config.detection_interval_s

    @staticmethod
    def _quality(score: float, indicators: FlowIndicators) -> FlowQuality:
        key = (indicators.skill_challenge_balance + indicators.concentration_level
               + indicators.intrinsic_motivation) / 3
        if score >= 0.8 and key >= 0.75:
            return FlowQuality.OPTIMAL
        if score >= 0.6 and key >= 0.6:
            return FlowQuality.DEEP
        if score >= 0.4 and key >= 0.4:
            return FlowQuality.MODERATE
        return FlowQuality.SHALLOW

    def _update_model(self, player_id: str, now: float):
        scores = [m.overall_flow_score for m in self._history.get(player_id, ())]
        if len(scores) < 5:
            return
        x = np.arange(len(scores))
        slope = float(np.polyfit(x, scores, 1)[0])
        self._models[player_id] = FlowSummaryModel(
            average_flow=float(np.mean(scores)),
            volatility=float(np.var(scores)),
            trend_coefficient=slope,
            updated_at=now,
        )

    # Queries

    def get_flow_history(self, player_id: str, limit: Optional[int] = None) -> List[FlowStateMetrics]:
        history = list(self._history.get(player_id, ()))
        if limit is not None:
            history = history[-limit:] if limit > 0 else []
        return history

    def latest(self, player_id: str) -> Optional[FlowStateMetrics]:
        history = self._history.get(player_id)
        return history[-1] if history else None

    def summary_model(self, player_id: str) -> Optional[FlowSummaryModel]:
        return self._models.get(player_id)

    def analyze(self, player_id: str, current: Optional[FlowStateMetrics] = None) -> Optional[FlowAnalysis]:
        """Suggestions, projections and insights for the latest sample."""
        current = current or self.latest(player_id)
        if current is None:
            return None
        suggestions = self.optimization_suggestions(current)
        return FlowAnalysis(
            current=current,
            history=self.get_flow_history(player_id),
            suggestions=suggestions,
            predictions=self.predictions(current),
            insights=self.actionable_insights(current, suggestions),
        )

    def optimization_suggestions(self, flow: FlowStateMetrics) -> List[FlowOptimizationSuggestion]:
        ind = flow.indicators
        suggestions = []
        if ind.skill_challenge_balance < 0.6:
            suggestions.append(FlowOptimizationSuggestion(
                type="difficulty_adjustment", priority="high",
                description="Rebalance difficulty toward the player's skill level",
                target_indicator="skill_challenge_balance", expected_impact=0.3,
                implementation_complexity="moderate", time_to_effect=30,
            ))
        if ind.concentration_level < 0.5:
            suggestions.append(FlowOptimizationSuggestion(
                type="distraction_reduction", priority="medium",
                description="Reduce interface distractions to support focus",
                target_indicator="concentration_level", expected_impact=0.2,
                implementation_complexity="simple", time_to_effect=5,
            ))
        if ind.intrinsic_motivation < 0.5:
            suggestions.append(FlowOptimizationSuggestion(
                type="challenge_modification", priority="high",
                description="Add meaningful challenges and rewards",
                target_indicator="intrinsic_motivation", expected_impact=0.25,
                implementation_complexity="complex", time_to_effect=60,
            ))
        if ind.immediate_feedback < 0.6:
            suggestions.append(FlowOptimizationSuggestion(
                type="feedback_enhancement", priority="medium",
                description="Improve real-time feedback on player actions",
                target_indicator="immediate_feedback", expected_impact=0.15,
                implementation_complexity="moderate", time_to_effect=15,
            ))
        suggestions.sort(key=lambda s: _PRIORITY_ORDER[s.priority], reverse=True)
        return suggestions

    def predictions(self, flow: FlowStateMetrics) -> FlowPredictions:
        trends = flow.flow_trends
        interval = self.config.detection_interval_s

        def project(horizon_s: float) -> float:
            ticks = horizon_s / interval
            return clamp(flow.overall_flow_score + trends.velocity * ticks
                         + trends.acceleration * ticks * ticks / 2)

        risks, opportunities = [], []
        if flow.indicators.skill_challenge_balance < 0.4:
            risks.append("skill_challenge_imbalance")
        if flow.indicators.concentration_level < 0.5:
            risks.append("low_concentration")
        if trends.direction == TrendDirection.DECLINING and trends.velocity < -0.05:
            risks.append("rapid_flow_decline")
        if flow.indicators.intrinsic_motivation > 0.7:
            opportunities.append("high_intrinsic_motivation")
        if flow.flow_stability > 0.7:
            opportunities.append("stable_flow")
        if trends.direction == TrendDirection.IMPROVING:
            opportunities.append("improving_flow")

        return FlowPredictions(
            predicted_flow_5m=project(300),
            predicted_flow_15m=project(900),
            risk_factors=risks,
            opportunities=opportunities,
        )

    @staticmethod
    def actionable_insights(flow: FlowStateMetrics,
                            suggestions: List[FlowOptimizationSuggestion]) -> ActionableInsights:
        insights = ActionableInsights()
        for suggestion in suggestions:
            if suggestion.priority not in ("high", "critical"):
                continue
            if suggestion.time_to_effect <= 30:
                insights.immediate_actions.append(suggestion.description)
            else:
                insights.strategic_recommendations.append(suggestion.description)
        if flow.flow_phase == FlowPhase.DECLINING:
            insights.preventative_measures.append("Monitor the declining flow trend")
            insights.preventative_measures.append("Prepare an emergency difficulty reduction")
        if flow.flow_stability < 0.5:
            insights.preventative_measures.append("Stabilise pacing to smooth the experience")
        if flow.overall_flow_score < 0.3:
            insights.immediate_actions.insert(0, "Start flow recovery immediately")
        return insights
