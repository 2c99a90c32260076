import os
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.orm import declarative_base
from .config import get_settings

settings = get_settings()

Base = declarative_base()


def create_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Async engine for the configured (or given) database URL."""
    return create_async_engine(url or os.environ.get("DATABASE_URL") or settings.database_url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


try:
    async_engine = create_engine(echo=settings.debug) if settings.persistence_enabled else None
    AsyncSessionLocal = create_session_factory(async_engine) if async_engine is not None else None
except Exception:
    async_engine = None
    AsyncSessionLocal = None


async def init_db(engine: Optional[AsyncEngine] = None):
    """Initialize database tables."""
    engine = engine or async_engine
    if engine is None:
        return
    # Import models so their tables are registered on Base.metadata
    from . import models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
