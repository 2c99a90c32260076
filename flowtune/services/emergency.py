"""Emergency detection and staged recovery plans."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

from .metrics import (
    DIFFICULTY_KNOBS, DifficultyMetrics, EmergencyResponse, EmergencyType,
    GameplayMetrics, ImpactDeltas, Severity,
)

logger = logging.getLogger(__name__)


@dataclass
class EmergencyThresholds:
    frustration: float = 0.8
    frustration_critical: float = 0.9
    engagement: float = 0.3
    engagement_critical: float = 0.2
    error_rate: float = 0.5
    error_rate_critical: float = 0.7
    boredom_flow: float = 0.3
    boredom_engagement: float = 0.5


@dataclass
class EmergencyConfig:
    thresholds: EmergencyThresholds = field(default_factory=EmergencyThresholds)
    reductions: Dict[Severity, float] = field(default_factory=lambda: {
        Severity.CRITICAL: 0.4,
        Severity.HIGH: 0.3,
    })
    default_reduction: float = 0.2
    knob_floors: Dict[str, float] = field(default_factory=lambda: {
        "ai_aggressiveness": 0.1,
        "ai_skill_level": 0.2,
        "game_complexity": 0.3,
        "time_pressure": 0.1,
        "resource_scarcity": 0.2,
        "market_volatility": 0.2,
        "random_event_frequency": 0.1,
        "competition_intensity": 0.2,
    })
    recovery_base_s: Dict[EmergencyType, float] = field(default_factory=lambda: {
        EmergencyType.FRUSTRATION: 180.0,
        EmergencyType.DISENGAGEMENT: 120.0,
        EmergencyType.OVERLOAD: 240.0,
        EmergencyType.BOREDOM: 60.0,
    })
    recovery_multipliers: Dict[Severity, float] = field(default_factory=lambda: {
        Severity.CRITICAL: 2.0,
        Severity.HIGH: 1.5,
    })
    critical_follow_ups: int = 5
    default_follow_ups: int = 3
    recovery_target: float = 0.5
    # Re-triggering inside this window is ignored unless severity escalates
    retrigger_window_s: float = 30.0


EMERGENCY_EXPECTED_IMPACT = ImpactDeltas(engagement=0.3, frustration=-0.5, flow=0.2, retention=0.4)


class EmergencyResponder:
    """Detects experience emergencies and plans the recovery."""

    def __init__(self, config: Optional[EmergencyConfig] = None):
        self.config = config or EmergencyConfig()

    def check(self, quality: GameplayMetrics,
              current: Optional[DifficultyMetrics] = None) -> EmergencyResponse:
        emergency_type, severity = self.classify(quality)
        if emergency_type is None:
            return EmergencyResponse(triggered=False)

        current = current or DifficultyMetrics()
        immediate = self.immediate_action(current, severity)
        return EmergencyResponse(
            triggered=True,
            type=emergency_type,
            severity=severity,
            immediate_action=immediate,
            follow_up_actions=self.follow_up_actions(immediate, severity),
            estimated_recovery_time=self.recovery_time(emergency_type, severity),
        )

    def classify(self, quality: GameplayMetrics) -> Tuple[Optional[EmergencyType], Severity]:
        """First matching emergency type and the highest severity seen."""
        t = self.config.thresholds
        found: List[Tuple[EmergencyType, Severity]] = []

        if quality.frustration_level > t.frustration:
            severity = Severity.CRITICAL if quality.frustration_level > t.frustration_critical else Severity.HIGH
            found.append((EmergencyType.FRUSTRATION, severity))
        if quality.engagement_level < t.engagement:
            severity = Severity.CRITICAL if quality.engagement_level < t.engagement_critical else Severity.MEDIUM
            found.append((EmergencyType.DISENGAGEMENT, severity))
        if quality.error_rate > t.error_rate:
            severity = Severity.CRITICAL if quality.error_rate > t.error_rate_critical else Severity.HIGH
            found.append((EmergencyType.OVERLOAD, severity))
        if quality.flow_state_indicator < t.boredom_flow and quality.engagement_level < t.boredom_engagement:
            found.append((EmergencyType.BOREDOM, Severity.MEDIUM))

        if not found:
            return None, Severity.LOW
        severity = max((s for _, s in found), key=lambda s: s.rank)
        return found[0][0], severity

    def immediate_action(self, current: DifficultyMetrics, severity: Severity) -> DifficultyMetrics:
        reduction = self.config.reductions.get(severity, self.config.default_reduction)
        floors = self.config.knob_floors
        return current.with_knobs(**{
            knob: max(floors.get(knob, 0.0), getattr(current, knob) - reduction)
            for knob in DIFFICULTY_KNOBS
        })

    def follow_up_actions(self, immediate: DifficultyMetrics, severity: Severity) -> List[DifficultyMetrics]:
        """Linear ramp from the immediate action back toward neutral."""
        steps = self.config.critical_follow_ups if severity == Severity.CRITICAL else self.config.default_follow_ups
        target = self.config.recovery_target
        actions = []
        for i in range(1, steps + 1):
            progress = i / steps
            actions.append(immediate.with_knobs(**{
                knob: getattr(immediate, knob) + (target - getattr(immediate, knob)) * progress
                for knob in DIFFICULTY_KNOBS
            }))
        return actions

    def recovery_time(self, emergency_type: EmergencyType, severity: Severity) -> float:
        base = self.config.recovery_base_s.get(emergency_type, 120.0)
        return base * self.config.recovery_multipliers.get(severity, 1.0)
