"""SQLAlchemy-backed persistence for per-player difficulty state."""

from dataclasses import dataclass
from typing import List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models.player_state import PlayerDifficultyState
from ..schemas.difficulty import PlayerStateSnapshot
from .metrics import DifficultyMetrics, DifficultyTransition

logger = logging.getLogger(__name__)


@dataclass
class LoadedState:
    difficulty: DifficultyMetrics
    transitions: List[DifficultyTransition]


class DifficultyStateStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def save(self, player_id: str, difficulty: DifficultyMetrics,
                   transitions: List[DifficultyTransition]):
        snapshot = PlayerStateSnapshot.capture(player_id, difficulty, transitions)
        payload = snapshot.model_dump(mode="json")
        async with self.session_factory() as session:
            row = await session.get(PlayerDifficultyState, player_id)
            if row is None:
                row = PlayerDifficultyState(player_id=player_id)
                session.add(row)
            row.difficulty = payload["difficulty"]
            row.overall_difficulty = difficulty.overall_difficulty
            row.transitions = payload["transitions"]
            row.transition_count = len(transitions)
            await session.commit()
        logger.info(f"Saved difficulty state for {player_id} ({len(transitions)} transitions)")

    async def load(self, player_id: str) -> Optional[LoadedState]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PlayerDifficultyState).where(PlayerDifficultyState.player_id == player_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        snapshot = PlayerStateSnapshot.model_validate({
            "player_id": player_id,
            "difficulty": row.difficulty,
            "transitions": row.transitions or [],
        })
        return LoadedState(
            difficulty=snapshot.difficulty.to_metrics(),
            transitions=[t.to_transition() for t in snapshot.transitions],
        )

    async def delete(self, player_id: str) -> bool:
        async with self.session_factory() as session:
            row = await session.get(PlayerDifficultyState, player_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
        return True
