from fastapi import HTTPException, Request

from ..services.difficulty_service import DifficultyService


def get_difficulty_service(request: Request) -> DifficultyService:
    """The session's DifficultyService, created during app lifespan."""
    service = getattr(request.app.state, "difficulty_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Difficulty service not running")
    return service
