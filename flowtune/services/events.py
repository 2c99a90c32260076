"""Difficulty event channel.

Listeners subscribe to an event type (or to all events) and are called
synchronously in subscription order. A failing listener is logged and
skipped.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging
import time

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    ADJUSTMENT_APPLIED = "adjustment_applied"
    EMERGENCY_TRIGGERED = "emergency_triggered"
    TRANSITION_VALIDATED = "transition_validated"


@dataclass
class DifficultyEvent:
    type: EventType
    player_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[DifficultyEvent], None]


class EventBus:
    def __init__(self):
        self._listeners: Dict[Optional[EventType], List[Listener]] = {}

    def subscribe(self, listener: Listener, event_type: Optional[EventType] = None) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe():
            self.unsubscribe(listener, event_type)
        return unsubscribe

    def unsubscribe(self, listener: Listener, event_type: Optional[EventType] = None):
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def publish(self, event: DifficultyEvent) -> int:
        """Deliver to type listeners then catch-all listeners."""
        delivered = 0
        for listener in list(self._listeners.get(event.type, [])) + list(self._listeners.get(None, [])):
            try:
                listener(event)
                delivered += 1
            except Exception:
                logger.exception(f"Listener failed for {event.type.value} ({event.player_id})")
        return delivered

    def emit(self, event_type: EventType, player_id: str, **payload: Any) -> int:
        return self.publish(DifficultyEvent(type=event_type, player_id=player_id, payload=payload))
