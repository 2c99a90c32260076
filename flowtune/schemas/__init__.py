from .difficulty import (
    DifficultySchema, ImpactSchema, PlayerReactionSchema, TransitionSchema,
    PlayerStateSnapshot, ActionTelemetryIn, SessionMetricsIn, TelemetryBatch,
    GameResultIn, AdjustmentResponse, FlowSampleSchema, FlowSuggestionSchema,
    FlowAnalysisResponse, PredictionResponse, SessionResponse, EngineStatsResponse,
)

__all__ = [
    "DifficultySchema", "ImpactSchema", "PlayerReactionSchema", "TransitionSchema",
    "PlayerStateSnapshot",
    "ActionTelemetryIn", "SessionMetricsIn", "TelemetryBatch", "GameResultIn",
    "AdjustmentResponse",
    "FlowSampleSchema", "FlowSuggestionSchema", "FlowAnalysisResponse",
    "PredictionResponse", "SessionResponse", "EngineStatsResponse",
]
