"""Core data model for adaptive difficulty.

Skill, gameplay quality and difficulty records are plain dataclasses whose
normalized fields live in [0, 1]. Aggregate scores (overall skill, overall
difficulty) are computed from a WeightsConfig and are never stored
independently of their facets.
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Dict, List, Optional
import time
import uuid


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def clamp01(value: Optional[float], default: float = 0.5) -> float:
    """Clamp a possibly-missing value into [0, 1], using default when missing."""
    if value is None:
        return default
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    if value != value:  # NaN
        return default
    return clamp(value)


# Facet names in the order they are weighted
SKILL_FACETS = (
    "decision_speed",
    "strategic_thinking",
    "risk_management",
    "resource_optimization",
    "adaptability",
    "game_knowledge",
    "consistency_level",
    "learning_rate",
)

DIFFICULTY_KNOBS = (
    "ai_aggressiveness",
    "ai_skill_level",
    "game_complexity",
    "time_pressure",
    "resource_scarcity",
    "market_volatility",
    "random_event_frequency",
    "competition_intensity",
)


@dataclass
class WeightsConfig:
    """Every tunable weight in one place."""

    skill_weights: Dict[str, float] = field(default_factory=lambda: {
        "decision_speed": 0.15,
        "strategic_thinking": 0.20,
        "risk_management": 0.15,
        "resource_optimization": 0.15,
        "adaptability": 0.10,
        "game_knowledge": 0.15,
        "consistency_level": 0.05,
        "learning_rate": 0.05,
    })

    difficulty_weights: Dict[str, float] = field(default_factory=lambda: {
        "ai_skill_level": 0.25,
        "ai_aggressiveness": 0.20,
        "game_complexity": 0.15,
        "time_pressure": 0.10,
        "market_volatility": 0.10,
        "resource_scarcity": 0.10,
        "random_event_frequency": 0.05,
        "competition_intensity": 0.05,
    })

    flow_weights: Dict[str, float] = field(default_factory=lambda: {
        "skill_challenge_balance": 0.25,
        "concentration_level": 0.15,
        "time_distortion": 0.10,
        "intrinsic_motivation": 0.15,
        "self_consciousness": 0.10,
        "autotelic_experience": 0.10,
        "control_sense": 0.10,
        "clear_goals": 0.025,
        "immediate_feedback": 0.025,
    })

    # Gap formula terms
    frustration_penalty: float = -0.5
    engagement_bonus: float = 0.3
    flow_dampening: float = 0.7
    flow_dampening_threshold: float = 0.7

    # Share of the gap magnitude each knob moves by in a recommendation
    target_shares: Dict[str, float] = field(default_factory=lambda: {
        "ai_skill_level": 0.3,
        "ai_aggressiveness": 0.2,
        "game_complexity": 0.2,
        "time_pressure": 0.15,
        "market_volatility": 0.1,
    })

    # Historical/current blend for game knowledge
    knowledge_history_weight: float = 0.3


DEFAULT_WEIGHTS = WeightsConfig()


class AdjustmentDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    MAINTAIN = "maintain"


class AdjustmentPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EmergencyType(str, Enum):
    FRUSTRATION = "frustration"
    DISENGAGEMENT = "disengagement"
    OVERLOAD = "overload"
    BOREDOM = "boredom"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


@dataclass
class PlayerSkillMetrics:
    """Inferred player competence, one facet per skill dimension."""
    decision_speed: float = 0.5
    strategic_thinking: float = 0.5
    risk_management: float = 0.5
    resource_optimization: float = 0.5
    adaptability: float = 0.5
    game_knowledge: float = 0.5
    consistency_level: float = 0.5
    learning_rate: float = 0.5
    weights: WeightsConfig = field(default_factory=lambda: DEFAULT_WEIGHTS, repr=False, compare=False)

    def __post_init__(self):
        for name in SKILL_FACETS:
            setattr(self, name, clamp01(getattr(self, name)))

    @property
    def overall_skill_level(self) -> float:
        return clamp(sum(
            getattr(self, name) * self.weights.skill_weights.get(name, 0.0)
            for name in SKILL_FACETS
        ))

    def to_dict(self) -> Dict[str, float]:
        data = {name: getattr(self, name) for name in SKILL_FACETS}
        data["overall_skill_level"] = self.overall_skill_level
        return data


@dataclass
class GameplayMetrics:
    """Observed play quality and emotional proxies."""
    win_rate: float = 0.5
    average_game_duration: float = 1800.0  # seconds
    average_decision_time: float = 5000.0  # milliseconds
    error_rate: float = 0.1
    optimal_move_rate: float = 0.5
    risk_taking_behavior: float = 0.5
    adaptation_speed: float = 0.5
    engagement_level: float = 0.5
    frustration_level: float = 0.0
    flow_state_indicator: float = 0.5

    def __post_init__(self):
        for name in ("win_rate", "error_rate", "optimal_move_rate", "risk_taking_behavior",
                     "adaptation_speed", "engagement_level", "flow_state_indicator"):
            setattr(self, name, clamp01(getattr(self, name)))
        self.frustration_level = clamp01(self.frustration_level, default=0.0)
        self.average_game_duration = max(0.0, float(self.average_game_duration))
        self.average_decision_time = max(0.0, float(self.average_decision_time))

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class DifficultyMetrics:
    """Tunable difficulty knobs for one player. 0.5 is neutral."""
    ai_aggressiveness: float = 0.5
    ai_skill_level: float = 0.5
    game_complexity: float = 0.5
    time_pressure: float = 0.5
    resource_scarcity: float = 0.5
    market_volatility: float = 0.5
    random_event_frequency: float = 0.5
    competition_intensity: float = 0.5
    weights: WeightsConfig = field(default_factory=lambda: DEFAULT_WEIGHTS, repr=False, compare=False)

    def __post_init__(self):
        for name in DIFFICULTY_KNOBS:
            setattr(self, name, clamp01(getattr(self, name)))

    @property
    def overall_difficulty(self) -> float:
        return clamp(sum(
            getattr(self, name) * self.weights.difficulty_weights.get(name, 0.0)
            for name in DIFFICULTY_KNOBS
        ))

    def knobs(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in DIFFICULTY_KNOBS}

    def with_knobs(self, **values: float) -> "DifficultyMetrics":
        """Copy with some knobs replaced; values are clamped."""
        unknown = set(values) - set(DIFFICULTY_KNOBS)
        if unknown:
            raise ValueError(f"Unknown difficulty knobs: {sorted(unknown)}")
        return replace(self, **{k: clamp01(v) for k, v in values.items()})

    def copy(self) -> "DifficultyMetrics":
        return replace(self)

    def to_dict(self) -> Dict[str, float]:
        data = self.knobs()
        data["overall_difficulty"] = self.overall_difficulty
        return data

    @classmethod
    def from_dict(cls, data: Dict, weights: WeightsConfig = DEFAULT_WEIGHTS) -> "DifficultyMetrics":
        """Build from a mapping; overall_difficulty and unknown keys are ignored."""
        return cls(weights=weights, **{k: data.get(k, 0.5) for k in DIFFICULTY_KNOBS})


@dataclass
class ImpactDeltas:
    """Predicted or measured change in player experience."""
    engagement: float = 0.0
    frustration: float = 0.0
    flow: float = 0.0
    retention: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "engagement": self.engagement,
            "frustration": self.frustration,
            "flow": self.flow,
            "retention": self.retention,
        }


@dataclass
class AdjustmentRecommendation:
    direction: AdjustmentDirection
    magnitude: float
    priority: AdjustmentPriority
    target_metrics: Dict[str, float] = field(default_factory=dict)
    reasoning: List[str] = field(default_factory=list)
    expected_impact: ImpactDeltas = field(default_factory=ImpactDeltas)


@dataclass
class PlayerReaction:
    """Player response measured some time after a transition."""
    satisfaction_change: float = 0.0
    engagement_change: float = 0.0
    frustration_change: float = 0.0
    performance_change: float = 0.0
    retention_likelihood: float = 0.7
    adaptation_time: float = 0.0  # seconds

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class TransitionAlreadyValidatedError(RuntimeError):
    """Raised when validation results are recorded twice for one transition."""


@dataclass
class DifficultyTransition:
    """Audit record of one applied adjustment.

    Everything except the validation results is fixed at creation. The
    validation results are written once by record_validation().
    """
    player_id: str
    from_difficulty: DifficultyMetrics
    to_difficulty: DifficultyMetrics
    strategy_id: str
    reason: str
    expected_impact: ImpactDeltas = field(default_factory=ImpactDeltas)
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: f"transition_{uuid.uuid4().hex[:12]}")
    success: bool = False
    actual_impact: Optional[ImpactDeltas] = None
    player_reaction: Optional[PlayerReaction] = None
    validated: bool = False

    def record_validation(
        self,
        success: bool,
        actual_impact: Optional[ImpactDeltas] = None,
        player_reaction: Optional[PlayerReaction] = None,
    ):
        if self.validated:
            raise TransitionAlreadyValidatedError(f"{self.id} was already validated")
        self.success = success
        self.actual_impact = actual_impact
        self.player_reaction = player_reaction
        self.validated = True


@dataclass
class EmergencyResponse:
    triggered: bool = False
    type: Optional[EmergencyType] = None
    severity: Severity = Severity.LOW
    immediate_action: Optional[DifficultyMetrics] = None
    follow_up_actions: List[DifficultyMetrics] = field(default_factory=list)
    estimated_recovery_time: float = 0.0  # seconds
