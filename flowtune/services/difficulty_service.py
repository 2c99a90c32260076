"""Per-session difficulty service.

One DifficultyService per game session (or per server process). It owns the
telemetry logs, the adjustment engine, the flow detector and the background
loops, and is handed to the HTTP layer through app.state.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional
import asyncio
import logging
import time

from .adjustment_engine import AdjustmentEngine, EngineConfig
from .events import EventBus, EventType, Listener
from .flow_detector import FlowAnalysis, FlowDetectionConfig, FlowStateDetector, FlowStateMetrics
from .metrics import DifficultyMetrics, DifficultyTransition, WeightsConfig, DEFAULT_WEIGHTS, clamp
from .scheduler import TimerScheduler
from .telemetry import (
    PerformanceRecord, PlayerTelemetryLog, SessionMetrics, TelemetrySource,
)
from .validation import DifficultyPrediction

logger = logging.getLogger(__name__)


class DifficultyService:
    """Adaptive difficulty for every player in a session."""

    def __init__(
        self,
        engine_config: Optional[EngineConfig] = None,
        flow_config: Optional[FlowDetectionConfig] = None,
        weights: WeightsConfig = DEFAULT_WEIGHTS,
        telemetry_source: Optional[TelemetrySource] = None,
        state_store=None,
        clock: Callable[[], float] = time.time,
        timer_poll_interval_s: float = 1.0,
        idle_eviction_s: float = 1800.0,
    ):
        self.clock = clock
        self.events = EventBus()
        self.scheduler = TimerScheduler(clock)
        self.engine = AdjustmentEngine(
            config=engine_config,
            weights=weights,
            scheduler=self.scheduler,
            events=self.events,
            clock=clock,
        )
        self.flow_detector = FlowStateDetector(flow_config, weights)
        self.telemetry_source = telemetry_source
        self.state_store = state_store
        self.timer_poll_interval_s = timer_poll_interval_s
        self.idle_eviction_s = idle_eviction_s
        self._logs: Dict[str, PlayerTelemetryLog] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._active: set = set()
        self._last_seen: Dict[str, float] = {}
        self._tasks: List[asyncio.Task] = []

    @property
    def config(self) -> EngineConfig:
        return self.engine.config

    def _log(self, player_id: str) -> PlayerTelemetryLog:
        log = self._logs.get(player_id)
        if log is None:
            log = PlayerTelemetryLog(player_id=player_id)
            self._logs[player_id] = log
        return log

    def _lock(self, player_id: str) -> asyncio.Lock:
        lock = self._locks.get(player_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[player_id] = lock
        return lock

    def subscribe(self, listener: Listener, event_type: Optional[EventType] = None):
        return self.events.subscribe(listener, event_type)

    # Sessions

    @property
    def active_players(self) -> List[str]:
        return sorted(self._active)

    async def start_session(self, player_id: str) -> DifficultyMetrics:
        """Register a player, restoring persisted difficulty when available."""
        if player_id in self._active:
            return self.get_difficulty(player_id)
        self._active.add(player_id)
        self._log(player_id)
        if self.state_store is not None:
            try:
                snapshot = await self.state_store.load(player_id)
            except Exception:
                logger.exception(f"Could not load saved state for {player_id}")
                snapshot = None
            if snapshot is not None:
                self.engine.restore(player_id, snapshot.difficulty, snapshot.transitions)
        self.flow_detector.start_detection(player_id, now=self.clock())
        logger.info(f"Session started for {player_id}")
        return self.get_difficulty(player_id)

    async def end_session(self, player_id: str) -> bool:
        """Tear down a player: cancel timers, stop sampling, persist, forget."""
        known = player_id in self._active or player_id in self._logs
        async with self._lock(player_id):
            self.flow_detector.stop_detection(player_id)
            if self.state_store is not None and player_id in self.engine.players():
                try:
                    await self.state_store.save(
                        player_id,
                        self.engine.get_difficulty(player_id),
                        self.engine.get_transition_history(player_id),
                    )
                except Exception:
                    logger.exception(f"Could not save state for {player_id}")
            self.engine.teardown(player_id)
            self.flow_detector.forget(player_id)
            self._logs.pop(player_id, None)
            self._active.discard(player_id)
            self._last_seen.pop(player_id, None)
        self._locks.pop(player_id, None)
        if known:
            logger.info(f"Session ended for {player_id}")
        return known

    # Telemetry

    def ingest(self, player_id: str, actions: Iterable[Any] = (),
               session_metrics: Optional[Any] = None) -> int:
        """Append telemetry to a player's log. Raises InvalidTelemetryError."""
        log = self._log(player_id)
        self._last_seen[player_id] = self.clock()
        parsed_session = SessionMetrics.from_dict(session_metrics) if session_metrics is not None else None
        added = log.add_actions(actions)
        if parsed_session is not None:
            log.session_metrics = parsed_session
        return added

    def record_game_result(self, player_id: str, outcome_quality: float, score: float,
                           game_duration: float, game_id: Optional[str] = None):
        self._last_seen[player_id] = self.clock()
        self._log(player_id).record_game(PerformanceRecord(
            timestamp=self.clock(),
            outcome_quality=clamp(outcome_quality),
            score=clamp(score),
            game_duration=max(0.0, game_duration),
            game_id=game_id,
        ))

    async def process_difficulty_adjustment(
        self,
        player_id: str,
        actions: Iterable[Any] = (),
        session_metrics: Optional[Any] = None,
    ) -> Optional[DifficultyTransition]:
        """Ingest a telemetry batch and run the adjustment pipeline."""
        async with self._lock(player_id):
            self.ingest(player_id, actions, session_metrics)
            log = self._log(player_id)
            return self.engine.process(player_id, log, log.session_metrics)

    async def _pull_telemetry(self, player_id: str):
        if self.telemetry_source is None:
            return
        log = self._log(player_id)
        since = log.actions[-1].timestamp if log.actions else None
        actions = await self.telemetry_source.fetch_actions(player_id, since)
        session = await self.telemetry_source.fetch_session_metrics(player_id)
        self.ingest(player_id, actions, session)

    # Queries

    def get_difficulty(self, player_id: str) -> DifficultyMetrics:
        return self.engine.get_difficulty(player_id)

    def get_transition_history(self, player_id: str, limit: Optional[int] = None) -> List[DifficultyTransition]:
        return self.engine.get_transition_history(player_id, limit)

    def get_flow_history(self, player_id: str, limit: Optional[int] = None) -> List[FlowStateMetrics]:
        return self.flow_detector.get_flow_history(player_id, limit)

    def predict_optimal_difficulty(self, player_id: str, horizon_s: float = 300.0) -> DifficultyPrediction:
        return self.engine.predict_optimal_difficulty(player_id, horizon_s)

    def get_engine_statistics(self) -> Dict:
        stats = self.engine.get_engine_statistics()
        stats["sessions"] = len(self._active)
        stats["flow_monitored"] = sum(1 for p in self._active if self.flow_detector.latest(p) is not None)
        return stats

    def export_state(self, player_id: str) -> Dict[str, Any]:
        """JSON-ready snapshot of a player's difficulty and transition log."""
        from ..schemas.difficulty import PlayerStateSnapshot
        snapshot = PlayerStateSnapshot.capture(
            player_id,
            self.engine.get_difficulty(player_id),
            self.engine.get_transition_history(player_id),
        )
        return snapshot.model_dump(mode="json")

    def restore_state(self, data: Dict[str, Any]) -> str:
        """Load a snapshot produced by export_state. Returns the player id."""
        from ..schemas.difficulty import PlayerStateSnapshot
        snapshot = PlayerStateSnapshot.model_validate(data)
        self.engine.restore(
            snapshot.player_id,
            snapshot.difficulty.to_metrics(),
            [t.to_transition() for t in snapshot.transitions],
        )
        self._last_seen[snapshot.player_id] = self.clock()
        return snapshot.player_id

    def sample_flow(self, player_id: str) -> Optional[FlowStateMetrics]:
        """Take a flow sample from the player's latest analysis."""
        log = self._logs.get(player_id)
        if log is None or log.data_points < self.config.minimum_data_points:
            return None
        skill, quality = self.engine.latest_analysis(player_id)
        if skill is None or quality is None:
            return None
        return self.flow_detector.detect(
            player_id,
            skill,
            self.engine.get_difficulty(player_id),
            quality,
            session=log.session_metrics,
            now=self.clock(),
        )

    def analyze_flow(self, player_id: str) -> Optional[FlowAnalysis]:
        current = self.sample_flow(player_id)
        return self.flow_detector.analyze(player_id, current)

    # Background loops

    async def run_adjustment_cycle(self):
        """One pass of the adjustment loop over active players."""
        players = self.active_players
        results = await asyncio.gather(
            *(self._adjust_player(p) for p in players), return_exceptions=True
        )
        for player_id, result in zip(players, results):
            if isinstance(result, Exception):
                logger.error(f"Adjustment cycle failed for {player_id}: {result}")

    async def _adjust_player(self, player_id: str) -> Optional[DifficultyTransition]:
        async with self._lock(player_id):
            await self._pull_telemetry(player_id)
            log = self._log(player_id)
            return self.engine.process(player_id, log, log.session_metrics)

    def run_emergency_sweep(self) -> List[DifficultyTransition]:
        """Emergency re-check for players not currently being processed."""
        idle = [p for p in self.active_players if not self._lock(p).locked()]
        return self.engine.sweep_emergencies(self.clock(), players=idle)

    def run_flow_cycle(self) -> List[FlowStateMetrics]:
        samples = []
        for player_id in self.flow_detector.due_players(self.clock()):
            try:
                sample = self.sample_flow(player_id)
            except Exception:
                logger.exception(f"Flow sampling failed for {player_id}")
                continue
            if sample is not None:
                samples.append(sample)
        return samples

    def evict_idle(self, now: Optional[float] = None) -> List[str]:
        """Drop players with no session and no recent telemetry."""
        now = self.clock() if now is None else now
        evicted = []
        for player_id, seen in list(self._last_seen.items()):
            if player_id in self._active or now - seen < self.idle_eviction_s:
                continue
            lock = self._locks.get(player_id)
            if lock is not None and lock.locked():
                continue
            self.engine.teardown(player_id)
            self.flow_detector.forget(player_id)
            self._logs.pop(player_id, None)
            self._locks.pop(player_id, None)
            del self._last_seen[player_id]
            evicted.append(player_id)
        if evicted:
            logger.info(f"Evicted {len(evicted)} idle players without a session")
        return evicted

    async def _loop(self, name: str, interval_s: float, step):
        while True:
            try:
                result = step()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"{name} loop iteration failed")
            await asyncio.sleep(interval_s)

    def start(self):
        """Start the background loops on the running event loop."""
        if self._tasks:
            return
        cfg = self.config
        self._tasks = [
            asyncio.create_task(self._loop("adjustment", cfg.adjustment_frequency_s, self.run_adjustment_cycle)),
            asyncio.create_task(self._loop("emergency", cfg.emergency_check_interval_s, self.run_emergency_sweep)),
            asyncio.create_task(self._loop("flow", 1.0, self.run_flow_cycle)),
            asyncio.create_task(self._loop("timers", self.timer_poll_interval_s, self.scheduler.fire_due)),
            asyncio.create_task(self._loop("eviction", 60.0, self.evict_idle)),
        ]
        logger.info("Difficulty service loops started")

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        for player_id in list(self._active):
            await self.end_session(player_id)
        self.scheduler.cancel_all()
        if self.telemetry_source is not None:
            await self.telemetry_source.close()
        logger.info("Difficulty service stopped")
