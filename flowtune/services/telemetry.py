"""Telemetry ingestion.

Per-action records and session metrics arrive from the host game (or are
pulled from an HTTP telemetry service) and accumulate in a per-player
PlayerTelemetryLog. Parsing is tolerant: unknown fields are ignored and
missing optional fields become None so the analyzers can apply their
documented defaults. Only structurally invalid records are rejected.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional
import logging
import time

import httpx

logger = logging.getLogger(__name__)


class InvalidTelemetryError(ValueError):
    """Raised for telemetry that cannot be interpreted at all."""


# Accepted aliases for each field, snake_case first
_ACTION_FIELDS = {
    "decision_time_ms": ("decision_time_ms", "decisionTimeMs", "decisionTime", "decision_time"),
    "risk_level": ("risk_level", "riskLevel"),
    "is_optimal": ("is_optimal", "isOptimal"),
    "is_error": ("is_error", "isError"),
    "immediate_value": ("immediate_value", "immediateValue"),
    "output_value": ("output_value", "outputValue"),
    "input_cost": ("input_cost", "inputCost"),
    "potential_reward": ("potential_reward", "potentialReward"),
    "potential_loss": ("potential_loss", "potentialLoss"),
    "quality_score": ("quality_score", "qualityScore"),
}

_BOOL_FIELDS = {"is_optimal", "is_error"}


def _pick(data: Mapping[str, Any], names: Iterable[str]) -> Any:
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return None


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result:
        return None
    return result


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    return None


@dataclass
class ActionTelemetry:
    """One player action as reported by the game."""
    type: str
    timestamp: float
    decision_time_ms: Optional[float] = None
    risk_level: Optional[float] = None
    is_optimal: Optional[bool] = None
    is_error: Optional[bool] = None
    immediate_value: Optional[float] = None
    output_value: Optional[float] = None
    input_cost: Optional[float] = None
    potential_reward: Optional[float] = None
    potential_loss: Optional[float] = None
    quality_score: Optional[float] = None

    @property
    def quality(self) -> float:
        """Per-action quality in [0, 1] used for consistency scoring."""
        if self.quality_score is not None:
            return max(0.0, min(1.0, self.quality_score))
        if self.is_error:
            return 0.0
        if self.is_optimal:
            return 1.0
        return 0.5

    @classmethod
    def from_dict(cls, data: Any) -> "ActionTelemetry":
        if isinstance(data, ActionTelemetry):
            return data
        if not isinstance(data, Mapping):
            raise InvalidTelemetryError(f"Action telemetry must be a mapping, got {type(data).__name__}")
        action_type = data.get("type")
        if not isinstance(action_type, str) or not action_type:
            raise InvalidTelemetryError("Action telemetry requires a non-empty 'type'")

        timestamp = _as_float(data.get("timestamp"))
        if timestamp is None:
            timestamp = time.time()
        elif timestamp > 1e11:
            # Millisecond epoch timestamps
            timestamp = timestamp / 1000.0

        values: Dict[str, Any] = {}
        for name, aliases in _ACTION_FIELDS.items():
            raw = _pick(data, aliases)
            values[name] = _as_bool(raw) if name in _BOOL_FIELDS else _as_float(raw)

        return cls(type=action_type, timestamp=timestamp, **values)


@dataclass
class SessionMetrics:
    """Periodic session-level measurements. Durations in seconds."""
    session_duration: float = 0.0
    idle_time: float = 0.0
    feature_usage_rate: float = 0.5
    actions_per_minute: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any) -> "SessionMetrics":
        if isinstance(data, SessionMetrics):
            return data
        if not isinstance(data, Mapping):
            raise InvalidTelemetryError("Session metrics must be a mapping")
        duration = _as_float(_pick(data, ("session_duration", "sessionDuration")))
        idle = _as_float(_pick(data, ("idle_time", "idleTime")))
        usage = _as_float(_pick(data, ("feature_usage_rate", "featureUsageRate")))
        apm = _as_float(_pick(data, ("actions_per_minute", "actionsPerMinute")))
        return cls(
            session_duration=max(0.0, duration or 0.0),
            idle_time=max(0.0, idle or 0.0),
            feature_usage_rate=0.5 if usage is None else max(0.0, min(1.0, usage)),
            actions_per_minute=apm,
        )


@dataclass
class PerformanceRecord:
    """Result of one finished game."""
    timestamp: float
    outcome_quality: float
    score: float
    game_duration: float  # seconds
    game_id: Optional[str] = None


@dataclass
class AdaptationRecord:
    """How quickly and how well the player settled after an adjustment."""
    timestamp: float
    speed: float
    success: bool


@dataclass
class PlayerTelemetryLog:
    """Rolling per-player telemetry state.

    Actions and performance history are capped FIFO buffers.
    """
    player_id: str
    max_actions: int = 100
    max_history: int = 100
    actions: Deque[ActionTelemetry] = field(default=None)
    performance_history: Deque[PerformanceRecord] = field(default=None)
    adaptations: Deque[AdaptationRecord] = field(default=None)
    session_metrics: Optional[SessionMetrics] = None

    def __post_init__(self):
        self.actions = deque(self.actions or [], maxlen=self.max_actions)
        self.performance_history = deque(self.performance_history or [], maxlen=self.max_history)
        self.adaptations = deque(self.adaptations or [], maxlen=50)

    def add_actions(self, actions: Iterable[Any]) -> int:
        """Parse and append actions. Returns how many were added."""
        parsed = [ActionTelemetry.from_dict(a) for a in actions]
        parsed.sort(key=lambda a: a.timestamp)
        self.actions.extend(parsed)
        return len(parsed)

    def record_game(self, record: PerformanceRecord):
        self.performance_history.append(record)

    def record_adaptation(self, record: AdaptationRecord):
        self.adaptations.append(record)

    def window(self, size: int = 10) -> List[ActionTelemetry]:
        """The most recent `size` actions, oldest first."""
        if size <= 0:
            return []
        return list(self.actions)[-size:]

    @property
    def data_points(self) -> int:
        return len(self.actions)


class TelemetrySource:
    """Where the service pulls telemetry from between pushes."""

    async def fetch_actions(self, player_id: str, since: Optional[float] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def fetch_session_metrics(self, player_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def close(self):
        pass


class InMemoryTelemetrySource(TelemetrySource):
    """Queue-backed source; the host game pushes, the service drains."""

    def __init__(self):
        self._actions: Dict[str, List[Dict[str, Any]]] = {}
        self._session: Dict[str, Dict[str, Any]] = {}

    def push(self, player_id: str, actions: Iterable[Dict[str, Any]] = (),
             session_metrics: Optional[Dict[str, Any]] = None):
        self._actions.setdefault(player_id, []).extend(actions)
        if session_metrics is not None:
            self._session[player_id] = dict(session_metrics)

    async def fetch_actions(self, player_id: str, since: Optional[float] = None) -> List[Dict[str, Any]]:
        # Draining delivers each push exactly once, so `since` is not needed
        return self._actions.pop(player_id, [])

    async def fetch_session_metrics(self, player_id: str) -> Optional[Dict[str, Any]]:
        return self._session.get(player_id)


class HttpTelemetrySource(TelemetrySource):
    """Pulls telemetry from a game telemetry REST service."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def fetch_actions(self, player_id: str, since: Optional[float] = None) -> List[Dict[str, Any]]:
        params = {}
        if since is not None:
            params["since"] = since
        try:
            response = await self.client.get(f"/players/{player_id}/actions", params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Telemetry fetch failed for {player_id}: {e}")
            return []
        payload = response.json()
        if isinstance(payload, dict):
            payload = payload.get("actions", [])
        return payload if isinstance(payload, list) else []

    async def fetch_session_metrics(self, player_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = await self.client.get(f"/players/{player_id}/session")
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Session metrics fetch failed for {player_id}: {e}")
            return None
        payload = response.json()
        return payload if isinstance(payload, dict) else None

    async def close(self):
        await self.client.aclose()
