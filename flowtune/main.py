"""FlowTune - FastAPI Backend.

Adaptive difficulty and flow-state engine for turn-based strategy games.
"""

import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .api import api_router
from .services.difficulty_service import DifficultyService
from .services.telemetry import HttpTelemetrySource

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    logger.info("Starting FlowTune API...")

    # Difficulty state persistence (optional - skip if unavailable)
    state_store = None
    try:
        from .database import async_engine, AsyncSessionLocal, init_db
        from .services.state_store import DifficultyStateStore
        if async_engine is None:
            raise RuntimeError("persistence disabled")
        await init_db()
        state_store = DifficultyStateStore(AsyncSessionLocal)
        logger.info("Database connection successful")
        app.state.db_available = True
    except Exception as e:
        logger.warning(f"Database unavailable, running without persistence: {e}")
        app.state.db_available = False

    telemetry_source = None
    if settings.telemetry_api_url:
        telemetry_source = HttpTelemetrySource(
            settings.telemetry_api_url,
            api_key=settings.telemetry_api_key,
            timeout=settings.telemetry_timeout,
        )

    service = DifficultyService(
        engine_config=settings.engine_config(),
        flow_config=settings.flow_config(),
        telemetry_source=telemetry_source,
        state_store=state_store,
        timer_poll_interval_s=settings.timer_poll_interval_s,
        idle_eviction_s=settings.idle_eviction_s,
    )
    app.state.difficulty_service = service
    if settings.run_background_loops:
        service.start()

    yield

    # Shutdown
    logger.info("Shutting down FlowTune API...")
    await service.stop()
    if getattr(app.state, 'db_available', False):
        from .database import async_engine
        await async_engine.dispose()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="""
    FlowTune API - adaptive difficulty for strategy games.

    Features:
    - Skill and gameplay quality inference from action telemetry
    - Flow state detection with phase tracking and projections
    - Gap-driven difficulty adjustment with cooldowns and smoothing
    - Emergency response with staged recovery
    - Post-adjustment validation and difficulty prediction
    """,
    version="1.0.0",
    lifespan=lifespan,
)

cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

frontend_url = os.environ.get("FRONTEND_URL")
if frontend_url:
    cors_origins.append(frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix=f"/api/{settings.api_version}")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# For running with uvicorn directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "flowtune.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=True,
    )
