from pydantic import AliasChoices, BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict

from ..services.metrics import (
    DifficultyMetrics, DifficultyTransition, ImpactDeltas, PlayerReaction,
)
from ..services.validation import DifficultyPrediction
from ..services.flow_detector import FlowStateMetrics, FlowAnalysis


class DifficultySchema(BaseModel):
    ai_aggressiveness: float = Field(0.5, ge=0, le=1)
    ai_skill_level: float = Field(0.5, ge=0, le=1)
    game_complexity: float = Field(0.5, ge=0, le=1)
    time_pressure: float = Field(0.5, ge=0, le=1)
    resource_scarcity: float = Field(0.5, ge=0, le=1)
    market_volatility: float = Field(0.5, ge=0, le=1)
    random_event_frequency: float = Field(0.5, ge=0, le=1)
    competition_intensity: float = Field(0.5, ge=0, le=1)
    overall_difficulty: Optional[float] = None  # Derived, ignored on input

    @classmethod
    def from_metrics(cls, metrics: DifficultyMetrics) -> "DifficultySchema":
        return cls(**metrics.to_dict())

    def to_metrics(self) -> DifficultyMetrics:
        return DifficultyMetrics.from_dict(self.model_dump())


class ImpactSchema(BaseModel):
    engagement: float = 0.0
    frustration: float = 0.0
    flow: float = 0.0
    retention: float = 0.0

    @classmethod
    def from_impact(cls, impact: ImpactDeltas) -> "ImpactSchema":
        return cls(**impact.to_dict())

    def to_impact(self) -> ImpactDeltas:
        return ImpactDeltas(**self.model_dump())


class PlayerReactionSchema(BaseModel):
    satisfaction_change: float = 0.0
    engagement_change: float = 0.0
    frustration_change: float = 0.0
    performance_change: float = 0.0
    retention_likelihood: float = 0.7
    adaptation_time: float = 0.0


class TransitionSchema(BaseModel):
    id: str
    timestamp: float
    player_id: str
    from_difficulty: DifficultySchema
    to_difficulty: DifficultySchema
    strategy_id: str
    reason: str = ""
    expected_impact: ImpactSchema = ImpactSchema()
    success: bool = False
    validated: bool = False
    actual_impact: Optional[ImpactSchema] = None
    player_reaction: Optional[PlayerReactionSchema] = None

    @classmethod
    def from_transition(cls, t: DifficultyTransition) -> "TransitionSchema":
        return cls(
            id=t.id,
            timestamp=t.timestamp,
            player_id=t.player_id,
            from_difficulty=DifficultySchema.from_metrics(t.from_difficulty),
            to_difficulty=DifficultySchema.from_metrics(t.to_difficulty),
            strategy_id=t.strategy_id,
            reason=t.reason,
            expected_impact=ImpactSchema.from_impact(t.expected_impact),
            success=t.success,
            validated=t.validated,
            actual_impact=ImpactSchema.from_impact(t.actual_impact) if t.actual_impact else None,
            player_reaction=PlayerReactionSchema(**t.player_reaction.to_dict()) if t.player_reaction else None,
        )

    def to_transition(self) -> DifficultyTransition:
        return DifficultyTransition(
            id=self.id,
            timestamp=self.timestamp,
            player_id=self.player_id,
            from_difficulty=self.from_difficulty.to_metrics(),
            to_difficulty=self.to_difficulty.to_metrics(),
            strategy_id=self.strategy_id,
            reason=self.reason,
            expected_impact=self.expected_impact.to_impact(),
            success=self.success,
            validated=self.validated,
            actual_impact=self.actual_impact.to_impact() if self.actual_impact else None,
            player_reaction=PlayerReaction(**self.player_reaction.model_dump()) if self.player_reaction else None,
        )


class PlayerStateSnapshot(BaseModel):
    """Persistence unit: live difficulty plus transition history."""
    player_id: str
    difficulty: DifficultySchema
    transitions: List[TransitionSchema] = []

    @classmethod
    def capture(cls, player_id: str, difficulty: DifficultyMetrics,
                transitions: List[DifficultyTransition]) -> "PlayerStateSnapshot":
        return cls(
            player_id=player_id,
            difficulty=DifficultySchema.from_metrics(difficulty),
            transitions=[TransitionSchema.from_transition(t) for t in transitions],
        )


# Telemetry requests

class ActionTelemetryIn(BaseModel):
    """Accepts snake_case or the game client's camelCase field names."""
    type: str = Field(..., min_length=1)
    timestamp: Optional[float] = None
    decision_time_ms: Optional[float] = Field(
        None, validation_alias=AliasChoices("decision_time_ms", "decisionTimeMs", "decisionTime"),
    )
    risk_level: Optional[float] = None
    is_optimal: Optional[bool] = None
    is_error: Optional[bool] = None
    immediate_value: Optional[float] = None
    output_value: Optional[float] = None
    input_cost: Optional[float] = None
    potential_reward: Optional[float] = None
    potential_loss: Optional[float] = None
    quality_score: Optional[float] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class SessionMetricsIn(BaseModel):
    session_duration: float = Field(0.0, ge=0)
    idle_time: float = Field(0.0, ge=0)
    feature_usage_rate: float = Field(0.5, ge=0, le=1)
    actions_per_minute: Optional[float] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class TelemetryBatch(BaseModel):
    actions: List[ActionTelemetryIn] = []
    session_metrics: Optional[SessionMetricsIn] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class GameResultIn(BaseModel):
    outcome_quality: float = Field(..., ge=0, le=1)
    score: float = Field(..., ge=0, le=1)
    game_duration: float = Field(..., ge=0)
    game_id: Optional[str] = None


class AdjustmentResponse(BaseModel):
    player_id: str
    adjusted: bool
    transition: Optional[TransitionSchema] = None
    difficulty: DifficultySchema


# Flow responses

class FlowSampleSchema(BaseModel):
    player_id: str
    timestamp: float
    overall_flow_score: float
    flow_phase: str
    flow_stability: float
    flow_duration: float
    flow_quality: str
    indicators: Dict[str, float]
    trend_direction: str
    velocity: float
    acceleration: float

    @classmethod
    def from_metrics(cls, m: FlowStateMetrics) -> "FlowSampleSchema":
        return cls(
            player_id=m.player_id,
            timestamp=m.timestamp,
            overall_flow_score=m.overall_flow_score,
            flow_phase=m.flow_phase.value,
            flow_stability=m.flow_stability,
            flow_duration=m.flow_duration,
            flow_quality=m.flow_quality.value,
            indicators=m.indicators.to_dict(),
            trend_direction=m.flow_trends.direction.value,
            velocity=m.flow_trends.velocity,
            acceleration=m.flow_trends.acceleration,
        )


class FlowSuggestionSchema(BaseModel):
    type: str
    priority: str
    description: str
    target_indicator: str
    expected_impact: float
    implementation_complexity: str
    time_to_effect: float


class FlowAnalysisResponse(BaseModel):
    current: FlowSampleSchema
    suggestions: List[FlowSuggestionSchema]
    predicted_flow_5m: float
    predicted_flow_15m: float
    risk_factors: List[str]
    opportunities: List[str]
    immediate_actions: List[str]
    strategic_recommendations: List[str]
    preventative_measures: List[str]

    @classmethod
    def from_analysis(cls, analysis: FlowAnalysis) -> "FlowAnalysisResponse":
        return cls(
            current=FlowSampleSchema.from_metrics(analysis.current),
            suggestions=[FlowSuggestionSchema(**vars(s)) for s in analysis.suggestions],
            predicted_flow_5m=analysis.predictions.predicted_flow_5m,
            predicted_flow_15m=analysis.predictions.predicted_flow_15m,
            risk_factors=analysis.predictions.risk_factors,
            opportunities=analysis.predictions.opportunities,
            immediate_actions=analysis.insights.immediate_actions,
            strategic_recommendations=analysis.insights.strategic_recommendations,
            preventative_measures=analysis.insights.preventative_measures,
        )


class AlternativeSchema(BaseModel):
    name: str
    difficulty: DifficultySchema
    probability: float


class PredictionResponse(BaseModel):
    player_id: str
    horizon_s: float
    predicted_skill: float
    recommended_difficulty: DifficultySchema
    confidence: float
    alternatives: List[AlternativeSchema] = []

    @classmethod
    def from_prediction(cls, p: DifficultyPrediction) -> "PredictionResponse":
        return cls(
            player_id=p.player_id,
            horizon_s=p.horizon_s,
            predicted_skill=p.predicted_skill,
            recommended_difficulty=DifficultySchema.from_metrics(p.recommended_difficulty),
            confidence=p.confidence,
            alternatives=[
                AlternativeSchema(
                    name=a.name,
                    difficulty=DifficultySchema.from_metrics(a.difficulty),
                    probability=a.probability,
                )
                for a in p.alternatives
            ],
        )


class SessionResponse(BaseModel):
    player_id: str
    active: bool
    difficulty: Optional[DifficultySchema] = None


class EngineStatsResponse(BaseModel):
    active_players: int
    sessions: int
    total_transitions: int
    validated_transitions: int
    success_rate: float
    active_emergencies: int
    pending_validations: int
    pending_timers: int
    flow_monitored: int
    strategy_usage: Dict[str, int] = {}
