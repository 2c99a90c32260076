from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List

from ..deps import get_difficulty_service
from ...schemas.difficulty import (
    AdjustmentResponse, DifficultySchema, GameResultIn, PredictionResponse,
    SessionResponse, TelemetryBatch, TransitionSchema,
)
from ...services.difficulty_service import DifficultyService
from ...services.telemetry import InvalidTelemetryError

router = APIRouter()


@router.get("/{player_id}/difficulty", response_model=DifficultySchema)
async def get_difficulty(player_id: str, service: DifficultyService = Depends(get_difficulty_service)):
    """Current difficulty knobs for a player (neutral if unknown)."""
    return DifficultySchema.from_metrics(service.get_difficulty(player_id))


@router.post("/{player_id}/telemetry", response_model=AdjustmentResponse)
async def submit_telemetry(
    player_id: str,
    batch: TelemetryBatch,
    service: DifficultyService = Depends(get_difficulty_service),
):
    """Ingest a telemetry batch and run an adjustment pass."""
    actions = [a.model_dump(exclude_none=True) for a in batch.actions]
    session = batch.session_metrics.model_dump() if batch.session_metrics else None
    try:
        transition = await service.process_difficulty_adjustment(player_id, actions, session)
    except InvalidTelemetryError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return AdjustmentResponse(
        player_id=player_id,
        adjusted=transition is not None,
        transition=TransitionSchema.from_transition(transition) if transition else None,
        difficulty=DifficultySchema.from_metrics(service.get_difficulty(player_id)),
    )


@router.get("/{player_id}/transitions", response_model=List[TransitionSchema])
async def get_transitions(
    player_id: str,
    limit: int = Query(50, ge=1, le=50),
    service: DifficultyService = Depends(get_difficulty_service),
):
    """Recent difficulty transitions, oldest first."""
    return [TransitionSchema.from_transition(t) for t in service.get_transition_history(player_id, limit)]


@router.get("/{player_id}/prediction", response_model=PredictionResponse)
async def predict_difficulty(
    player_id: str,
    horizon_s: float = Query(300.0, gt=0, le=86400),
    service: DifficultyService = Depends(get_difficulty_service),
):
    """Predicted skill and recommended difficulty over a time horizon."""
    return PredictionResponse.from_prediction(service.predict_optimal_difficulty(player_id, horizon_s))


@router.post("/{player_id}/games", status_code=201)
async def record_game(
    player_id: str,
    result: GameResultIn,
    service: DifficultyService = Depends(get_difficulty_service),
):
    """Record a finished game for win rate and learning rate."""
    service.record_game_result(
        player_id,
        outcome_quality=result.outcome_quality,
        score=result.score,
        game_duration=result.game_duration,
        game_id=result.game_id,
    )
    return {"player_id": player_id, "recorded": True}


@router.post("/{player_id}/session", response_model=SessionResponse)
async def start_session(player_id: str, service: DifficultyService = Depends(get_difficulty_service)):
    """Start adaptive difficulty for a player."""
    difficulty = await service.start_session(player_id)
    return SessionResponse(player_id=player_id, active=True, difficulty=DifficultySchema.from_metrics(difficulty))


@router.delete("/{player_id}/session", response_model=SessionResponse)
async def end_session(player_id: str, service: DifficultyService = Depends(get_difficulty_service)):
    """End a player's session and cancel all of its timers."""
    if not await service.end_session(player_id):
        raise HTTPException(status_code=404, detail=f"No session for player {player_id}")
    return SessionResponse(player_id=player_id, active=False)
