"""Async SQLAlchemy engine lifecycle for the knowledge store.

The engine is owned by a Database instance that is constructed once at
startup and passed to the repository, instead of a module-level singleton.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from src.agent_knowledge.store.models import KnowledgeBase

logger = structlog.get_logger(__name__)


class Database:
    """Owns the async engine and hands out sessions.

    Args:
        url: SQLAlchemy async database URL.
        engine: Pre-built engine (takes precedence over url).
    """

    def __init__(self, url: str | None = None, engine: AsyncEngine | None = None) -> None:
        if engine is None:
            if url is None:
                raise ValueError("Database requires a url or an engine")
            engine = create_async_engine(url, pool_size=10, max_overflow=5, echo=False)
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield an AsyncSession bound to the engine."""
        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            yield session

    async def init_schema(self) -> None:
        """Create the knowledge schema and tables if they don't exist."""
        async with self._engine.begin() as conn:
            await conn.execute(text("CREATE SCHEMA IF NOT EXISTS knowledge"))
            await conn.run_sync(KnowledgeBase.metadata.create_all)
        logger.info("database.schema_initialized")

    async def close(self) -> None:
        """Dispose of the engine and close all connections."""
        await self._engine.dispose()
