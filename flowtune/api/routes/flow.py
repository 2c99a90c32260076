from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List

from ..deps import get_difficulty_service
from ...schemas.difficulty import FlowAnalysisResponse, FlowSampleSchema
from ...services.difficulty_service import DifficultyService

router = APIRouter()


@router.get("/{player_id}/history", response_model=List[FlowSampleSchema])
async def get_flow_history(
    player_id: str,
    limit: int = Query(20, ge=1, le=100),
    service: DifficultyService = Depends(get_difficulty_service),
):
    """Recent flow samples for a player, oldest first."""
    return [FlowSampleSchema.from_metrics(m) for m in service.get_flow_history(player_id, limit)]


@router.get("/{player_id}/analysis", response_model=FlowAnalysisResponse)
async def analyze_flow(player_id: str, service: DifficultyService = Depends(get_difficulty_service)):
    """Take a fresh flow sample and return suggestions and projections."""
    analysis = service.analyze_flow(player_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail=f"Not enough data to analyse flow for {player_id}")
    return FlowAnalysisResponse.from_analysis(analysis)
