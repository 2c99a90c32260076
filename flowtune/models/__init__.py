from .player_state import PlayerDifficultyState

__all__ = [
    "PlayerDifficultyState",
]
