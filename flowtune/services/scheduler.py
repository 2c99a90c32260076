"""Cancelable timers keyed by player.

Timers are data: schedule() records a due time and returns a handle, and
fire_due() runs everything that has come due. A background task pumps
fire_due() in production; tests call it directly with a fake clock.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Union
import inspect
import itertools
import logging
import time

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[None]]]


@dataclass
class TimerHandle:
    id: int
    owner: str
    label: str
    due_at: float
    callback: TimerCallback = field(repr=False)
    cancelled: bool = False
    fired: bool = False

    def cancel(self):
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)


class TimerScheduler:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._timers: Dict[int, TimerHandle] = {}
        self._ids = itertools.count(1)

    def schedule(self, owner: str, delay_s: float, callback: TimerCallback,
                 label: str = "") -> TimerHandle:
        handle = TimerHandle(
            id=next(self._ids),
            owner=owner,
            label=label,
            due_at=self.clock() + max(0.0, delay_s),
            callback=callback,
        )
        self._timers[handle.id] = handle
        return handle

    def cancel(self, handle: TimerHandle):
        handle.cancel()
        self._timers.pop(handle.id, None)

    def cancel_owner(self, owner: str) -> int:
        """Cancel every pending timer for an owner. Returns how many."""
        handles = [h for h in self._timers.values() if h.owner == owner]
        for handle in handles:
            self.cancel(handle)
        if handles:
            logger.debug(f"Cancelled {len(handles)} timers for {owner}")
        return len(handles)

    def cancel_all(self):
        for handle in list(self._timers.values()):
            self.cancel(handle)

    def pending(self, owner: Optional[str] = None) -> List[TimerHandle]:
        return sorted(
            (h for h in self._timers.values() if h.pending and (owner is None or h.owner == owner)),
            key=lambda h: (h.due_at, h.id),
        )

    def pending_count(self, owner: Optional[str] = None) -> int:
        return len(self.pending(owner))

    async def fire_due(self, now: Optional[float] = None) -> int:
        """Run callbacks whose due time has passed, earliest first."""
        now = self.clock() if now is None else now
        due = [h for h in self.pending() if h.due_at <= now]
        fired = 0
        for handle in due:
            # An earlier callback may have cancelled this one
            if not handle.pending:
                continue
            handle.fired = True
            self._timers.pop(handle.id, None)
            try:
                result = handle.callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Timer {handle.label or handle.id} for {handle.owner} failed")
            fired += 1
        return fired
