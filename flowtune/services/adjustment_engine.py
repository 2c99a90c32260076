"""Dynamic difficulty adjustment engine.

Owns each player's live DifficultyMetrics and the audit trail of
transitions. One call to process() runs the full pipeline for a batch of
telemetry:

1. Skill and gameplay quality analysis
2. Emergency check (short-circuits everything else when triggered)
3. Gap analysis and gating (confidence, gap size, cooldown, adaptation)
4. Strategy selection and bounded, smoothed application
5. Transition recording, validation scheduling, event emission

All engine methods are synchronous. Asyncio's single thread makes each call
atomic; callers hold a per-player lock only around awaited sequences.
"""

from collections import deque
from dataclasses import dataclass, field, replace
from typing import Callable, Deque, Dict, List, Optional, Tuple
import logging
import time

from .emergency import EMERGENCY_EXPECTED_IMPACT, EmergencyResponder
from .events import EventBus, EventType
from .gap_analyzer import DifficultyGapAnalyzer, GapAnalysis
from .metrics import (
    DIFFICULTY_KNOBS, AdjustmentDirection, AdjustmentRecommendation,
    DifficultyMetrics, DifficultyTransition, EmergencyResponse, EmergencyType,
    GameplayMetrics, PlayerSkillMetrics, Severity, WeightsConfig,
    DEFAULT_WEIGHTS, clamp,
)
from .quality_analyzer import GameplayQualityAnalyzer
from .scheduler import TimerHandle, TimerScheduler
from .skill_profiler import SkillProfiler
from .strategies import AdjustmentStrategy, default_strategies, select_strategy
from .telemetry import AdaptationRecord, PlayerTelemetryLog, SessionMetrics
from .validation import (
    DifficultyPrediction, PredictionModels, ValidationTracker,
    actual_impact, evaluate_success, measure_reaction,
)

logger = logging.getLogger(__name__)

EMERGENCY_STRATEGY = "emergency_response"


@dataclass
class EngineConfig:
    adjustment_frequency_s: float = 30.0
    minimum_data_points: int = 5
    max_adjustment_magnitude: float = 0.2
    smoothing_factor: float = 0.3
    confidence_threshold: float = 0.6
    gap_threshold: float = 0.15
    cooldown_s: float = 60.0
    adaptation_window_s: float = 120.0
    validation_period_s: float = 120.0
    emergency_check_interval_s: float = 10.0
    skill_window: int = 10
    quality_window: int = 50
    max_transitions: int = 50
    # Warn when an emergency outlives its estimated recovery by this factor
    extended_emergency_factor: float = 1.5


@dataclass
class ActiveEmergency:
    type: EmergencyType
    severity: Severity
    started_at: float
    estimated_recovery_time: float
    follow_ups: List[TimerHandle] = field(default_factory=list)
    warned: bool = False


@dataclass
class PlayerEngineState:
    player_id: str
    difficulty: DifficultyMetrics
    transitions: Deque[DifficultyTransition]
    log: Optional[PlayerTelemetryLog] = None
    session_metrics: Optional[SessionMetrics] = None
    last_adjustment_at: Optional[float] = None
    adaptation_until: float = 0.0
    strategy_last_used: Dict[str, float] = field(default_factory=dict)
    emergency: Optional[ActiveEmergency] = None
    last_skill: Optional[PlayerSkillMetrics] = None
    last_quality: Optional[GameplayMetrics] = None
    last_analysis: Optional[GapAnalysis] = None
    analyzed_through: Tuple[int, float] = (0, 0.0)
    # Telemetry position the last emergency was raised on
    emergency_through: Optional[Tuple[int, float]] = None


def _log_marker(log: PlayerTelemetryLog) -> Tuple[int, float]:
    actions = log.actions
    return len(actions), actions[-1].timestamp if actions else 0.0


class AdjustmentEngine:
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        weights: WeightsConfig = DEFAULT_WEIGHTS,
        scheduler: Optional[TimerScheduler] = None,
        events: Optional[EventBus] = None,
        profiler: Optional[SkillProfiler] = None,
        quality_analyzer: Optional[GameplayQualityAnalyzer] = None,
        gap_analyzer: Optional[DifficultyGapAnalyzer] = None,
        responder: Optional[EmergencyResponder] = None,
        strategies: Optional[List[AdjustmentStrategy]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or EngineConfig()
        self.weights = weights
        self.clock = clock
        self.scheduler = scheduler or TimerScheduler(clock)
        self.events = events or EventBus()
        self.profiler = profiler or SkillProfiler(weights=weights)
        self.quality_analyzer = quality_analyzer or GameplayQualityAnalyzer()
        self.gap_analyzer = gap_analyzer or DifficultyGapAnalyzer(weights=weights)
        self.responder = responder or EmergencyResponder()
        self.strategies = strategies if strategies is not None else default_strategies()
        self.validations = ValidationTracker()
        self.predictions = PredictionModels(weights)
        self._players: Dict[str, PlayerEngineState] = {}

    # Player state

    def _state(self, player_id: str) -> PlayerEngineState:
        state = self._players.get(player_id)
        if state is None:
            state = PlayerEngineState(
                player_id=player_id,
                difficulty=DifficultyMetrics(weights=self.weights),
                transitions=deque(maxlen=self.config.max_transitions),
            )
            self._players[player_id] = state
        return state

    def players(self) -> List[str]:
        return list(self._players)

    def get_difficulty(self, player_id: str) -> DifficultyMetrics:
        """Current difficulty, neutral for unknown players. Returns a copy."""
        state = self._players.get(player_id)
        if state is None:
            return DifficultyMetrics(weights=self.weights)
        return state.difficulty.copy()

    def get_transition_history(self, player_id: str, limit: Optional[int] = None) -> List[DifficultyTransition]:
        state = self._players.get(player_id)
        if state is None:
            return []
        transitions = list(state.transitions)
        if limit is not None:
            transitions = transitions[-limit:] if limit > 0 else []
        return transitions

    def latest_analysis(self, player_id: str) -> Tuple[Optional[PlayerSkillMetrics], Optional[GameplayMetrics]]:
        state = self._players.get(player_id)
        if state is None:
            return None, None
        return state.last_skill, state.last_quality

    def in_emergency(self, player_id: str) -> bool:
        state = self._players.get(player_id)
        return state is not None and state.emergency is not None

    def restore(self, player_id: str, difficulty: DifficultyMetrics,
                transitions: List[DifficultyTransition] = ()):
        """Load persisted state for a player that has no live state yet."""
        state = self._state(player_id)
        state.difficulty = difficulty
        state.transitions.clear()
        state.transitions.extend(transitions)
        logger.info(f"Restored difficulty state for {player_id} ({len(state.transitions)} transitions)")

    def teardown(self, player_id: str) -> Optional[PlayerEngineState]:
        """Cancel every timer for the player and drop its live state."""
        cancelled = self.scheduler.cancel_owner(player_id)
        self.validations.drop_player(player_id)
        self.profiler.forget(player_id)
        self.predictions.forget(player_id)
        state = self._players.pop(player_id, None)
        logger.info(f"Engine teardown for {player_id}: {cancelled} timers cancelled")
        return state

    # Pipeline

    def process(self, player_id: str, log: PlayerTelemetryLog,
                session_metrics: Optional[SessionMetrics] = None,
                now: Optional[float] = None) -> Optional[DifficultyTransition]:
        """Run the adjustment pipeline for one player.

        Returns the applied transition, or None when nothing changed.
        """
        now = self.clock() if now is None else now
        state = self._state(player_id)
        state.log = log
        if session_metrics is not None:
            state.session_metrics = session_metrics

        if log.data_points < self.config.minimum_data_points:
            logger.debug(f"Not enough data for {player_id}: {log.data_points} actions")
            return None

        try:
            skill, quality = self._analyze(state, now)
        except Exception:
            logger.exception(f"Analysis failed for {player_id}")
            return None

        emergency = self._check_emergency(state, quality, now)
        if emergency is not None:
            return emergency

        try:
            return self._adjust(state, skill, quality, log.data_points, now)
        except Exception:
            logger.exception(f"Adjustment failed for {player_id}")
            return None

    def _measure(self, state: PlayerEngineState, now: float) -> Tuple[PlayerSkillMetrics, GameplayMetrics]:
        log = state.log
        skill = self.profiler.analyze_skill(
            state.player_id,
            log.window(self.config.skill_window),
            log.performance_history,
            log.adaptations,
            now=now,
        )
        quality = self.quality_analyzer.analyze_quality(
            state.player_id,
            log.window(self.config.quality_window),
            log.performance_history,
            session_metrics=state.session_metrics or log.session_metrics,
            skill=skill,
            difficulty=state.difficulty,
            adaptations=log.adaptations,
            now=now,
        )
        return skill, quality

    def _analyze(self, state: PlayerEngineState, now: float) -> Tuple[PlayerSkillMetrics, GameplayMetrics]:
        skill, quality = self._measure(state, now)
        marker = _log_marker(state.log)
        if marker != state.analyzed_through:
            self.profiler.record(state.player_id, skill)
            self.predictions.skill.observe(state.player_id, skill, now)
            state.analyzed_through = marker
        state.last_skill, state.last_quality = skill, quality
        return skill, quality

    def _adjust(self, state: PlayerEngineState, skill: PlayerSkillMetrics,
                quality: GameplayMetrics, data_points: int, now: float) -> Optional[DifficultyTransition]:
        cfg = self.config
        player_id = state.player_id
        analysis = self.gap_analyzer.analyze(player_id, skill, state.difficulty, quality, data_points)
        state.last_analysis = analysis
        recommendation = analysis.recommendation

        if analysis.confidence < cfg.confidence_threshold:
            logger.debug(f"Skipping {player_id}: confidence {analysis.confidence:.2f}")
            return None
        if abs(analysis.gap) < cfg.gap_threshold or recommendation.direction == AdjustmentDirection.MAINTAIN:
            return None
        if state.last_adjustment_at is not None and now - state.last_adjustment_at < cfg.cooldown_s:
            logger.debug(f"Skipping {player_id}: cooldown")
            return None
        if now < state.adaptation_until:
            logger.debug(f"Skipping {player_id}: still adapting")
            return None
        if state.emergency is not None:
            return None

        strategy = select_strategy(
            self.strategies,
            recommendation,
            skill.overall_skill_level,
            quality.flow_state_indicator,
            analysis.gap,
            now=now,
            last_used=state.strategy_last_used,
        )
        if strategy is None:
            logger.debug(f"No applicable strategy for {player_id}")
            return None
        return self._execute(state, strategy, recommendation, quality, now)

    def _execute(self, state: PlayerEngineState, strategy: AdjustmentStrategy,
                 recommendation: AdjustmentRecommendation, baseline: GameplayMetrics,
                 now: float) -> DifficultyTransition:
        bounded = replace(
            recommendation,
            magnitude=min(recommendation.magnitude, self.config.max_adjustment_magnitude),
        )
        previous = state.difficulty
        proposed = strategy.apply(previous, bounded)
        applied = self.smooth(previous, proposed)

        transition = DifficultyTransition(
            player_id=state.player_id,
            from_difficulty=previous.copy(),
            to_difficulty=applied.copy(),
            strategy_id=strategy.id,
            reason="; ".join(recommendation.reasoning),
            expected_impact=replace(recommendation.expected_impact),
            timestamp=now,
        )
        state.difficulty = applied
        state.strategy_last_used[strategy.id] = now
        self._record(state, transition, baseline, now)

        logger.info(
            f"Difficulty {recommendation.direction.value} for {state.player_id} via {strategy.id}: "
            f"{previous.overall_difficulty:.3f} -> {applied.overall_difficulty:.3f}"
        )
        self.events.emit(
            EventType.ADJUSTMENT_APPLIED, state.player_id,
            transition=transition, strategy_id=strategy.id,
        )
        return transition

    def smooth(self, previous: DifficultyMetrics, proposed: DifficultyMetrics) -> DifficultyMetrics:
        factor = self.config.smoothing_factor
        return previous.with_knobs(**{
            knob: getattr(previous, knob) + (getattr(proposed, knob) - getattr(previous, knob)) * factor
            for knob in DIFFICULTY_KNOBS
        })

    def _record(self, state: PlayerEngineState, transition: DifficultyTransition,
                baseline: GameplayMetrics, now: float):
        state.transitions.append(transition)
        state.last_adjustment_at = now
        state.adaptation_until = now + self.config.adaptation_window_s
        handle = self.scheduler.schedule(
            state.player_id,
            self.config.validation_period_s,
            lambda: self.validate(transition.id),
            label=f"validate:{transition.id}",
        )
        self.validations.track(transition, baseline, handle)

    # Emergencies

    def _check_emergency(self, state: PlayerEngineState, quality: GameplayMetrics,
                         now: float) -> Optional[DifficultyTransition]:
        # Reductions are measured from neutral, never from the current knobs
        response = self.responder.check(quality, DifficultyMetrics(weights=self.weights))
        if not response.triggered:
            return None
        active = state.emergency
        escalated = active is not None and response.severity.rank > active.severity.rank
        if escalated:
            return self._apply_emergency(state, response, quality, now)
        if state.log is not None and _log_marker(state.log) == state.emergency_through:
            logger.debug(f"No new telemetry for {state.player_id} since its last emergency")
            return None
        if active is not None and now - active.started_at < self.responder.config.retrigger_window_s:
            logger.debug(f"Emergency for {state.player_id} already being handled")
            return None
        return self._apply_emergency(state, response, quality, now)

    def _apply_emergency(self, state: PlayerEngineState, response: EmergencyResponse,
                         baseline: GameplayMetrics, now: float) -> DifficultyTransition:
        player_id = state.player_id
        if state.emergency is not None:
            for handle in state.emergency.follow_ups:
                self.scheduler.cancel(handle)

        previous = state.difficulty
        transition = DifficultyTransition(
            player_id=player_id,
            from_difficulty=previous.copy(),
            to_difficulty=response.immediate_action.copy(),
            strategy_id=EMERGENCY_STRATEGY,
            reason=f"Emergency {response.type.value} ({response.severity.value})",
            expected_impact=replace(EMERGENCY_EXPECTED_IMPACT),
            timestamp=now,
        )
        state.difficulty = response.immediate_action
        if state.log is not None:
            state.emergency_through = _log_marker(state.log)
        self._record(state, transition, baseline, now)

        emergency = ActiveEmergency(
            type=response.type,
            severity=response.severity,
            started_at=now,
            estimated_recovery_time=response.estimated_recovery_time,
        )
        steps = len(response.follow_up_actions)
        interval = response.estimated_recovery_time / steps if steps else 0.0
        for i, target in enumerate(response.follow_up_actions, start=1):
            emergency.follow_ups.append(self.scheduler.schedule(
                player_id,
                interval * i,
                self._follow_up_callback(player_id, target, i, steps),
                label=f"emergency_follow_up:{i}/{steps}",
            ))
        state.emergency = emergency

        logger.warning(
            f"Emergency {response.type.value} ({response.severity.value}) for {player_id}: "
            f"difficulty {previous.overall_difficulty:.3f} -> {state.difficulty.overall_difficulty:.3f}, "
            f"recovery in {response.estimated_recovery_time:.0f}s"
        )
        self.events.emit(
            EventType.EMERGENCY_TRIGGERED, player_id,
            transition=transition, response=response,
        )
        return transition

    def _follow_up_callback(self, player_id: str, target: DifficultyMetrics, step: int, steps: int):
        def apply():
            self.apply_follow_up(player_id, target, step, steps)
        return apply

    def apply_follow_up(self, player_id: str, target: DifficultyMetrics, step: int, steps: int):
        state = self._players.get(player_id)
        if state is None or state.emergency is None:
            return
        previous = state.difficulty
        state.difficulty = target.copy()
        logger.info(
            f"Emergency follow-up {step}/{steps} for {player_id}: "
            f"{previous.overall_difficulty:.3f} -> {state.difficulty.overall_difficulty:.3f}"
        )
        if step >= steps:
            logger.info(f"Emergency recovery complete for {player_id}")
            state.emergency = None
        self.events.emit(
            EventType.ADJUSTMENT_APPLIED, player_id,
            difficulty=state.difficulty.copy(), follow_up_step=step, follow_up_steps=steps,
        )

    def sweep_emergencies(self, now: Optional[float] = None,
                          players: Optional[List[str]] = None) -> List[DifficultyTransition]:
        """Re-check every player with telemetry for emergencies.

        Runs outside the regular adjustment cadence and warns about
        emergencies lasting well past their estimated recovery.
        """
        now = self.clock() if now is None else now
        triggered = []
        for player_id in list(self._players if players is None else players):
            state = self._players.get(player_id)
            if state is None or state.log is None or state.log.data_points < self.config.minimum_data_points:
                continue
            self._warn_if_extended(state, now)
            try:
                skill, quality = self._measure(state, now)
            except Exception:
                logger.exception(f"Emergency sweep analysis failed for {player_id}")
                continue
            state.last_skill, state.last_quality = skill, quality
            transition = self._check_emergency(state, quality, now)
            if transition is not None:
                triggered.append(transition)
        return triggered

    def _warn_if_extended(self, state: PlayerEngineState, now: float):
        emergency = state.emergency
        if emergency is None or emergency.warned:
            return
        elapsed = now - emergency.started_at
        if elapsed > emergency.estimated_recovery_time * self.config.extended_emergency_factor:
            emergency.warned = True
            logger.warning(
                f"Extended {emergency.type.value} emergency for {state.player_id}: "
                f"{elapsed:.0f}s (estimated {emergency.estimated_recovery_time:.0f}s)"
            )

    # Validation and prediction

    def validate(self, transition_id: str) -> Optional[DifficultyTransition]:
        """Measure the player's reaction to a transition and learn from it."""
        pending = self.validations.pop(transition_id)
        if pending is None:
            return None
        transition = pending.transition
        state = self._players.get(transition.player_id)
        if state is None or state.log is None:
            return None
        now = self.clock()

        try:
            _, current = self._measure(state, now)
            reaction = measure_reaction(
                pending.baseline, current, now - transition.timestamp, self.config.validation_period_s,
            )
            impact = actual_impact(reaction)
            transition.record_validation(evaluate_success(transition.expected_impact, impact), impact, reaction)
        except Exception:
            logger.exception(f"Validation failed for {transition_id}")
            return None

        self.predictions.learn(transition)
        state.adaptation_until = min(state.adaptation_until, now)
        state.log.record_adaptation(AdaptationRecord(
            timestamp=now,
            speed=clamp(0.5 + reaction.satisfaction_change),
            success=transition.success,
        ))
        logger.info(
            f"Validated {transition_id} for {transition.player_id}: "
            f"{'success' if transition.success else 'failed'}"
        )
        self.events.emit(EventType.TRANSITION_VALIDATED, transition.player_id, transition=transition)
        return transition

    def predict_optimal_difficulty(self, player_id: str, horizon_s: float = 300.0) -> DifficultyPrediction:
        state = self._players.get(player_id)
        return self.predictions.predict_optimal_difficulty(
            player_id, horizon_s, history_size=len(state.transitions) if state else 0,
        )

    def get_engine_statistics(self) -> Dict:
        transitions = [t for s in self._players.values() for t in s.transitions]
        validated = [t for t in transitions if t.validated]
        strategy_usage: Dict[str, int] = {}
        for t in transitions:
            strategy_usage[t.strategy_id] = strategy_usage.get(t.strategy_id, 0) + 1
        return {
            "active_players": len(self._players),
            "total_transitions": len(transitions),
            "validated_transitions": len(validated),
            "success_rate": (sum(1 for t in validated if t.success) / len(validated)) if validated else 0.0,
            "active_emergencies": sum(1 for s in self._players.values() if s.emergency is not None),
            "pending_validations": len(self.validations),
            "pending_timers": self.scheduler.pending_count(),
            "strategy_usage": strategy_usage,
        }
