"""Async engine and sessions, plus the COPY bulk load used by pattern builds."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from transit_patterns.config import get_settings
from transit_patterns.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Sequence

logger = get_logger(__name__)

COPY_DRIVER = "asyncpg"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Engine for ``DATABASE_URL``, created on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            str(settings.database_url),
            echo=settings.debug,
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        # Pattern builds and edits commit explicitly
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with get_session_factory()() as session:
        yield session


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Session scope for background work such as pattern builds."""
    async with get_session_factory()() as session:
        yield session


async def supports_copy(session: AsyncSession) -> bool:
    """True when the session's driver can bulk load with COPY."""
    connection = await session.connection()
    return connection.dialect.driver == COPY_DRIVER


async def copy_file_to_table(
    session: AsyncSession, table: str, path: str, columns: Sequence[str]
) -> None:
    """Bulk load a tab-separated text file into ``table`` inside the session's transaction.

    Only valid when :func:`supports_copy` is true.
    """
    connection = await session.connection()
    raw = await connection.get_raw_connection()
    await raw.driver_connection.copy_to_table(
        table,
        source=path,
        columns=list(columns),
        format="text",
    )
    logger.debug("Copied staging file", table=table, path=path)


async def check_database_connection() -> bool:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Database check failed", error=str(exc))
        return False
    return True


async def close_database() -> None:
    """Dispose the engine. The next call to :func:`get_engine` recreates it."""
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
