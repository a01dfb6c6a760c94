"""Async database engine and session lifecycle.

One DatabaseSessionManager owns the engine for the process. Sessions are
handed out as async context managers that commit when the block exits
normally and roll back on anything else, including task cancellation, so a
cancelled find-or-create never leaves a half-written user row behind.

SQLite (aiosqlite) is used for development and tests, PostgreSQL (asyncpg)
in deployment. Only the engine options differ between the two.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from appdoki.config import Settings
from appdoki.infra.db.models import Base

logger = logging.getLogger(__name__)

SQLITE_LOCK_TIMEOUT_SECONDS = 30.0
POOL_RECYCLE_SECONDS = 3600


class DatabaseSessionManager:
    """Owns the async engine and hands out transactional sessions.

    Example:
        manager = DatabaseSessionManager(settings)
        await manager.init()

        async with manager.session() as session:
            user = (await session.execute(select(User))).scalars().first()

        await manager.close()
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    def _engine_options(self) -> dict[str, Any]:
        if self.settings.is_sqlite:
            # aiosqlite runs each connection on its own thread
            return {
                "connect_args": {
                    "check_same_thread": False,
                    "timeout": SQLITE_LOCK_TIMEOUT_SECONDS,
                },
            }
        return {
            "pool_size": self.settings.database_pool_size,
            "max_overflow": self.settings.database_max_overflow,
            "pool_pre_ping": True,
            "pool_recycle": POOL_RECYCLE_SECONDS,
        }

    async def init(self) -> None:
        """Create the engine and session factory. Must precede session()."""
        self._engine = create_async_engine(
            self.settings.database_url,
            echo=self.settings.database_echo,
            **self._engine_options(),
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info(
            "Database engine initialized",
            extra={"dialect": self._engine.dialect.name},
        )

    async def create_all(self) -> None:
        """Create all tables (lab environment and tests only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database ping failed", extra={"error": str(e)})
            return False
        return True

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session bound to one transaction.

        Raises:
            RuntimeError: If init() has not been called
        """
        if self._session_factory is None:
            raise RuntimeError("SessionManager not initialized. Call init() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    @property
    def is_initialized(self) -> bool:
        return self._session_factory is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("SessionManager not initialized. Call init() first.")
        return self._engine

