from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession, async_sessionmaker,
                                    create_async_engine)

from bonus_core.core.config import make_async_db_url, settings

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None

log = logging.getLogger(__name__)


def init_engine(database_url: str | None = None) -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        return
    url = database_url or settings.database_url
    if not url:
        raise RuntimeError("DATABASE_URL is missing")
    url = make_async_db_url(url)
    kwargs = {"echo": settings.db_echo}
    if url.startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    _engine = create_async_engine(url, **kwargs)
    _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
    log.info("db_engine_initialized")


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("DB engine not initialized. Call init_engine() first.")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        raise RuntimeError("DB engine not initialized. Call init_engine() first.")
    return _sessionmaker


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessionmaker = None
    log.info("db_engine_disposed")


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Unit of work: commits on success, rolls back everything on any error."""
    sm = get_sessionmaker()
    async with sm() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
