"""
flowengine/db/engine.py
───────────────────────
Async engine for the flow store.

The engine only ever serves the executor's active-flow lookup, so sessions
handed out here are read-only: nothing is committed and the transaction is
rolled back when the session closes.  The engine is built on first use, which
keeps importing this module free of any database driver work.
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from flowengine.config import settings

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    # NullPool: a lookup per inbound message, no idle connections between them
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.postgres.async_url, poolclass=NullPool)
    return _engine


def _session_factory() -> async_sessionmaker[AsyncSession]:
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _sessions


@asynccontextmanager
async def read_session() -> AsyncIterator[AsyncSession]:
    """Session for SELECTs; closing it discards the transaction."""
    async with _session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    global _engine, _sessions
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessions = None
