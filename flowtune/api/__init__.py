from fastapi import APIRouter
from .routes import players, flow, engine

api_router = APIRouter()

api_router.include_router(players.router, prefix="/players", tags=["players"])
api_router.include_router(flow.router, prefix="/flow", tags=["flow"])
api_router.include_router(engine.router, prefix="/engine", tags=["engine"])
