"""
Async database engine and session management.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pitwall.config import get_settings
from pitwall.models import Base

settings = get_settings()
logger = structlog.get_logger("database")


def _engine_kwargs(url: str) -> dict:
    """SQLite (tests, local dev) shares one connection; servers get a sized pool."""
    if url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_engine_kwargs(settings.database_url),
)

async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create tables and make sure the fixed race record exists."""
    from pitwall.services import race_store

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as session:
        row = await race_store.ensure_seed_row(session)
    logger.info("Race record ready", race_state_id=row.id, is_running=row.is_running)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session_maker() as session:
        yield session


@asynccontextmanager
async def get_session_context() -> AsyncIterator[AsyncSession]:
    """Session for code that outlives a request (SSE generators)."""
    async with async_session_maker() as session:
        yield session
