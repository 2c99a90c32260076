from sqlalchemy import Column, String, Float, Integer, JSON, DateTime
from sqlalchemy.sql import func
from ..database import Base


class PlayerDifficultyState(Base):
    """Saved difficulty and transition history for one player."""
    __tablename__ = "player_difficulty_states"

    player_id = Column(String(128), primary_key=True)

    # Live knobs at save time
    difficulty = Column(JSON, nullable=False)
    overall_difficulty = Column(Float, default=0.5)

    # Audit trail, oldest first
    transitions = Column(JSON, default=list)
    transition_count = Column(Integer, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
