# Core modules (no database dependencies)
from .metrics import (
    PlayerSkillMetrics, GameplayMetrics, DifficultyMetrics, DifficultyTransition,
    AdjustmentRecommendation, EmergencyResponse, ImpactDeltas, PlayerReaction,
    AdjustmentDirection, AdjustmentPriority, EmergencyType, Severity, WeightsConfig,
)
from .telemetry import (
    ActionTelemetry, SessionMetrics, PlayerTelemetryLog, InvalidTelemetryError,
    TelemetrySource, InMemoryTelemetrySource, HttpTelemetrySource,
)
from .skill_profiler import SkillProfiler
from .quality_analyzer import GameplayQualityAnalyzer
from .flow_detector import FlowStateDetector, FlowStateMetrics, FlowPhase, FlowQuality
from .gap_analyzer import DifficultyGapAnalyzer
from .strategies import AdjustmentStrategy, default_strategies, select_strategy
from .emergency import EmergencyResponder
from .scheduler import TimerScheduler, TimerHandle
from .events import EventBus, EventType, DifficultyEvent
from .adjustment_engine import AdjustmentEngine, EngineConfig
from .difficulty_service import DifficultyService

__all__ = [
    "PlayerSkillMetrics",
    "GameplayMetrics",
    "DifficultyMetrics",
    "DifficultyTransition",
    "AdjustmentRecommendation",
    "EmergencyResponse",
    "ImpactDeltas",
    "PlayerReaction",
    "AdjustmentDirection",
    "AdjustmentPriority",
    "EmergencyType",
    "Severity",
    "WeightsConfig",
    "ActionTelemetry",
    "SessionMetrics",
    "PlayerTelemetryLog",
    "InvalidTelemetryError",
    "TelemetrySource",
    "InMemoryTelemetrySource",
    "HttpTelemetrySource",
    "SkillProfiler",
    "GameplayQualityAnalyzer",
    "FlowStateDetector",
    "FlowStateMetrics",
    "FlowPhase",
    "FlowQuality",
    "DifficultyGapAnalyzer",
    "AdjustmentStrategy",
    "default_strategies",
    "select_strategy",
    "EmergencyResponder",
    "TimerScheduler",
    "TimerHandle",
    "EventBus",
    "EventType",
    "DifficultyEvent",
    "AdjustmentEngine",
    "EngineConfig",
    "DifficultyService",
]
