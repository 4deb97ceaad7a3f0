"""
Async SQLAlchemy engine and sessions.

PostgreSQL (psycopg) in deployment, SQLite (aiosqlite) for local runs and
tests. Routes receive a session through ``get_db``.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from lanchonete.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    options = {"echo": settings.database_echo}
    if not url.startswith("sqlite"):
        # SQLite has no server-side pool to tune
        options.update(pool_size=5, max_overflow=10, pool_pre_ping=True)
    return options


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

# Loaded attributes stay readable after commit; routes serialize after committing
async_session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """Create missing tables. Runs at application startup."""
    from lanchonete import models  # noqa: F401  (registers the mappers)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables ready")
