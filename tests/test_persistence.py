"""Tests for transition schemas and the SQLAlchemy state store."""

import asyncio
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from flowtune.database import create_engine, create_session_factory, init_db
from flowtune.schemas.difficulty import DifficultySchema, PlayerStateSnapshot, TransitionSchema
from flowtune.services.metrics import (
    DifficultyMetrics, DifficultyTransition, ImpactDeltas, PlayerReaction,
)
from flowtune.services.state_store import DifficultyStateStore


def validated_transition():
    transition = DifficultyTransition(
        player_id="p1",
        from_difficulty=DifficultyMetrics(),
        to_difficulty=DifficultyMetrics(ai_skill_level=0.62, time_pressure=0.4),
        strategy_id="gradual_ai_skill",
        reason="Player skill exceeds the current challenge",
        expected_impact=ImpactDeltas(engagement=0.1, frustration=0.03, flow=0.07, retention=0.04),
        timestamp=1234.5,
    )
    transition.record_validation(
        True,
        ImpactDeltas(engagement=0.05, frustration=-0.02, flow=0.035, retention=0.035),
        PlayerReaction(engagement_change=0.05, frustration_change=-0.02, adaptation_time=120),
    )
    return transition


class TestSchemas:
    """Tests for schema conversion."""

    def test_difficulty_schema_includes_overall(self):
        schema = DifficultySchema.from_metrics(DifficultyMetrics(ai_skill_level=1.0))
        assert schema.overall_difficulty == pytest.approx(0.5 + 0.5 * 0.25)

    def test_overall_is_not_trusted_on_input(self):
        metrics = DifficultySchema(ai_skill_level=0.5, overall_difficulty=0.99).to_metrics()
        assert metrics.overall_difficulty == pytest.approx(0.5)

    def test_transition_survives_json(self):
        original = validated_transition()
        payload = TransitionSchema.from_transition(original).model_dump_json()
        restored = TransitionSchema.model_validate_json(payload).to_transition()
        assert restored.id == original.id
        assert restored.to_difficulty == original.to_difficulty
        assert restored.validated and restored.success
        assert restored.actual_impact == original.actual_impact
        assert restored.player_reaction.adaptation_time == 120

    def test_snapshot_capture(self):
        snapshot = PlayerStateSnapshot.capture("p1", DifficultyMetrics(), [validated_transition()])
        assert snapshot.player_id == "p1"
        assert len(snapshot.transitions) == 1


class TestStateStore:
    """Tests for DifficultyStateStore against SQLite."""

    def _store(self, tmp_path):
        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'flowtune.db'}")
        return engine, DifficultyStateStore(create_session_factory(engine))

    def test_save_and_load(self, tmp_path):
        async def scenario():
            engine, store = self._store(tmp_path)
            await init_db(engine)
            difficulty = DifficultyMetrics(ai_skill_level=0.7, game_complexity=0.35)
            await store.save("p1", difficulty, [validated_transition()])
            loaded = await store.load("p1")
            await engine.dispose()
            return difficulty, loaded

        difficulty, loaded = asyncio.run(scenario())
        assert loaded.difficulty == difficulty
        assert len(loaded.transitions) == 1
        assert loaded.transitions[0].success

    def test_save_overwrites(self, tmp_path):
        async def scenario():
            engine, store = self._store(tmp_path)
            await init_db(engine)
            await store.save("p1", DifficultyMetrics(ai_skill_level=0.7), [])
            await store.save("p1", DifficultyMetrics(ai_skill_level=0.3), [])
            loaded = await store.load("p1")
            await engine.dispose()
            return loaded

        loaded = asyncio.run(scenario())
        assert loaded.difficulty.ai_skill_level == pytest.approx(0.3)
        assert loaded.transitions == []

    def test_missing_player_and_delete(self, tmp_path):
        async def scenario():
            engine, store = self._store(tmp_path)
            await init_db(engine)
            missing = await store.load("nobody")
            await store.save("p1", DifficultyMetrics(), [])
            deleted = await store.delete("p1")
            deleted_again = await store.delete("p1")
            await engine.dispose()
            return missing, deleted, deleted_again

        missing, deleted, deleted_again = asyncio.run(scenario())
        assert missing is None
        assert deleted is True
        assert deleted_again is False
