"""Async database engine and session management."""

from __future__ import annotations

import asyncio

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from bodhit.config import settings
from bodhit.observability.logging import get_logger
from bodhit.storage.models import Base

logger = get_logger(__name__)

__all__ = [
    "get_async_engine",
    "get_async_session_factory",
    "init_async_db",
    "shutdown_async_db",
]

_async_engine: AsyncEngine | None = None
_async_engine_url: str | None = None
_async_engine_loop_id: int | None = None  # loop the engine was created on
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _is_sqlite_file(url: str) -> bool:
    return url.startswith("sqlite") and ":memory:" not in url


def _async_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://")
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://")
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://")
    return url


def _current_loop_id() -> int | None:
    try:
        return id(asyncio.get_running_loop())
    except RuntimeError:
        return None


def get_async_engine() -> AsyncEngine:
    """Get or create the async engine for ``settings.database_url``.

    The engine is rebuilt when the URL changes or when it is requested from a
    different event loop than the one it was created on.
    """
    global _async_engine, _async_engine_url, _async_engine_loop_id, _AsyncSessionLocal

    url = _async_url(settings.database_url)
    loop_id = _current_loop_id()
    stale = _async_engine is not None and (
        _async_engine_url != url
        or (loop_id is not None and _async_engine_loop_id is not None and loop_id != _async_engine_loop_id)
    )
    if stale:
        logger.debug("Discarding async engine for %s", _async_engine_url)
        try:
            _async_engine.sync_engine.dispose()
        except Exception:  # pragma: no cover - best-effort cleanup
            logger.debug("Failed to dispose stale async engine", exc_info=True)
        _async_engine = None
        _AsyncSessionLocal = None

    if _async_engine is None:
        logger.info("Creating async database engine")
        kw: dict = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            kw["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url:
                # One shared connection keeps the in-memory database alive.
                kw["poolclass"] = StaticPool
            elif settings.environment == "test":
                kw["poolclass"] = NullPool
        _async_engine = create_async_engine(url, **kw)
        _async_engine_url = url
        _async_engine_loop_id = loop_id
    return _async_engine


def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create async session factory."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = async_sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_async_engine(),
            class_=AsyncSession,
        )
    return _AsyncSessionLocal


async def init_async_db() -> None:
    """Create tables for the configured database."""
    await shutdown_async_db()
    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if _is_sqlite_file(settings.database_url):
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA foreign_keys=ON"))
            await conn.execute(text("PRAGMA busy_timeout=3000"))
            logger.info("Enabled WAL mode for SQLite database")
    logger.info("Async database tables created")


async def shutdown_async_db() -> None:
    """Dispose the async engine and clear the session factory."""
    global _async_engine, _async_engine_url, _async_engine_loop_id, _AsyncSessionLocal

    engine = _async_engine
    _AsyncSessionLocal = None
    _async_engine = None
    _async_engine_url = None
    _async_engine_loop_id = None
    if engine is not None:
        try:
            await engine.dispose()
        except Exception:  # pragma: no cover - best-effort cleanup
            logger.debug("Failed to dispose async engine", exc_info=True)
