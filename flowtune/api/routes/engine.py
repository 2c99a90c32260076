from fastapi import APIRouter, Depends

from ..deps import get_difficulty_service
from ...schemas.difficulty import EngineStatsResponse
from ...services.difficulty_service import DifficultyService

router = APIRouter()


@router.get("/stats", response_model=EngineStatsResponse)
async def get_stats(service: DifficultyService = Depends(get_difficulty_service)):
    """Engine-wide counters."""
    return EngineStatsResponse(**service.get_engine_statistics())
