"""Tests for difficulty_service.py"""

import asyncio
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flowtune.services.difficulty_service import DifficultyService
from flowtune.services.events import EventType
from flowtune.services.skill_profiler import SkillProfiler
from flowtune.services.telemetry import InMemoryTelemetrySource


class ProfilerFailingFor(SkillProfiler):
    def __init__(self, player_id):
        super().__init__()
        self.failing = player_id

    def analyze_skill(self, player_id, *args, **kwargs):
        if player_id == self.failing:
            raise RuntimeError(f"corrupt telemetry for {player_id}")
        return super().analyze_skill(player_id, *args, **kwargs)


class FakeClock:
    def __init__(self, t=10000.0):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


def strong_actions(n=15, start=9000.0):
    return [
        {"type": "property_purchase", "timestamp": start + i, "decision_time_ms": 1500,
         "risk_level": 0.5, "is_optimal": True, "is_error": False,
         "immediate_value": 100, "output_value": 150, "input_cost": 100}
        for i in range(n)
    ]


def struggling_actions(n=15, start=9000.0):
    return [
        {"type": "trade", "timestamp": start + i, "decision_time_ms": 20000,
         "is_optimal": False, "is_error": True}
        for i in range(n)
    ]


SESSION = {"session_duration": 3600, "idle_time": 60, "feature_usage_rate": 1.0}


class TestSessionLifecycle:
    """Tests for start/end session."""

    def test_start_session_returns_neutral_difficulty(self):
        service = DifficultyService(clock=FakeClock())
        difficulty = asyncio.run(service.start_session("p1"))
        assert difficulty.overall_difficulty == pytest.approx(0.5)
        assert service.active_players == ["p1"]

    def test_end_session_cancels_timers(self):
        service = DifficultyService(clock=FakeClock())

        async def scenario():
            await service.start_session("p1")
            await service.process_difficulty_adjustment("p1", struggling_actions())
            pending = service.scheduler.pending_count("p1")
            known = await service.end_session("p1")
            return pending, known

        pending, known = asyncio.run(scenario())
        assert pending == 6
        assert known is True
        assert service.scheduler.pending_count("p1") == 0
        assert service.active_players == []

    def test_idle_players_without_session_are_evicted(self):
        clock = FakeClock()
        service = DifficultyService(clock=clock, idle_eviction_s=1800)

        async def scenario():
            await service.start_session("p1")
            await service.process_difficulty_adjustment("p1", strong_actions(), SESSION)
            await service.process_difficulty_adjustment("drive-by", strong_actions(), SESSION)

        asyncio.run(scenario())
        clock.advance(1000)
        assert service.evict_idle() == []

        clock.advance(800)
        assert service.evict_idle() == ["drive-by"]
        assert "drive-by" not in service.engine.players()
        assert service.scheduler.pending_count("drive-by") == 0
        assert "drive-by" not in service._logs
        assert "p1" in service.engine.players()

    def test_end_unknown_session(self):
        service = DifficultyService(clock=FakeClock())
        assert asyncio.run(service.end_session("ghost")) is False


class TestAdjustmentPipeline:
    """Tests for telemetry-driven adjustment."""

    def test_process_adjusts_and_publishes(self):
        service = DifficultyService(clock=FakeClock())
        events = []
        service.subscribe(events.append)
        transition = asyncio.run(service.process_difficulty_adjustment("p1", strong_actions(), SESSION))
        assert transition is not None
        assert service.get_difficulty("p1") == transition.to_difficulty
        assert [e.type for e in events] == [EventType.ADJUSTMENT_APPLIED]

    def test_players_are_independent(self):
        service = DifficultyService(clock=FakeClock())

        async def scenario():
            return await asyncio.gather(
                service.process_difficulty_adjustment("a", strong_actions(), SESSION),
                service.process_difficulty_adjustment("b", struggling_actions()),
            )

        a, b = asyncio.run(scenario())
        assert a.to_difficulty.overall_difficulty > 0.5
        assert b.to_difficulty.overall_difficulty < 0.5
        assert service.engine.in_emergency("b")
        assert not service.engine.in_emergency("a")

    def test_adjustment_cycle_pulls_from_source(self):
        source = InMemoryTelemetrySource()
        service = DifficultyService(clock=FakeClock(), telemetry_source=source)

        async def scenario():
            await service.start_session("p1")
            source.push("p1", strong_actions(), session_metrics=SESSION)
            await service.run_adjustment_cycle()

        asyncio.run(scenario())
        assert len(service.get_transition_history("p1")) == 1

    def test_failing_player_does_not_block_others(self):
        source = InMemoryTelemetrySource()
        service = DifficultyService(clock=FakeClock(), telemetry_source=source)
        service.engine.profiler = ProfilerFailingFor("broken")

        async def scenario():
            for player_id in ("broken", "healthy"):
                await service.start_session(player_id)
                source.push(player_id, strong_actions(), session_metrics=SESSION)
            await service.run_adjustment_cycle()

        asyncio.run(scenario())
        assert service.get_transition_history("broken") == []
        assert service.get_difficulty("broken").overall_difficulty == pytest.approx(0.5)
        assert len(service.get_transition_history("healthy")) == 1

    def test_export_and_restore_state(self):
        service = DifficultyService(clock=FakeClock())
        transition = asyncio.run(service.process_difficulty_adjustment("p1", strong_actions(), SESSION))
        exported = service.export_state("p1")

        fresh = DifficultyService(clock=FakeClock())
        assert fresh.restore_state(exported) == "p1"
        assert fresh.get_difficulty("p1") == transition.to_difficulty
        assert [t.id for t in fresh.get_transition_history("p1")] == [transition.id]

    def test_game_results_feed_history(self):
        service = DifficultyService(clock=FakeClock())
        service.record_game_result("p1", outcome_quality=0.9, score=1.4, game_duration=1200)
        record = service._log("p1").performance_history[-1]
        assert record.score == 1.0


class TestBackgroundCycles:
    """Tests for the emergency sweep and flow sampling."""

    def test_flow_cycle_samples_due_players(self):
        clock = FakeClock()
        service = DifficultyService(clock=clock)

        async def scenario():
            await service.start_session("p1")
            await service.process_difficulty_adjustment("p1", strong_actions(), SESSION)

        asyncio.run(scenario())
        assert len(service.run_flow_cycle()) == 1
        assert service.run_flow_cycle() == []
        clock.advance(30)
        assert len(service.run_flow_cycle()) == 1
        assert len(service.get_flow_history("p1")) == 2

    def test_flow_analysis(self):
        service = DifficultyService(clock=FakeClock())
        asyncio.run(service.process_difficulty_adjustment("p1", strong_actions(), SESSION))
        analysis = service.analyze_flow("p1")
        assert analysis is not None
        assert 0.0 <= analysis.current.overall_flow_score <= 1.0

    def test_flow_analysis_needs_data(self):
        service = DifficultyService(clock=FakeClock())
        assert service.analyze_flow("p1") is None

    def test_statistics(self):
        service = DifficultyService(clock=FakeClock())

        async def scenario():
            await service.start_session("p1")
            await service.process_difficulty_adjustment("p1", struggling_actions())

        asyncio.run(scenario())
        stats = service.get_engine_statistics()
        assert stats["sessions"] == 1
        assert stats["active_emergencies"] == 1
        assert stats["strategy_usage"] == {"emergency_response": 1}
