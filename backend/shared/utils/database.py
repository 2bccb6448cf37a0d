"""
Async PostgreSQL access for the verification store, built on the SQLAlchemy 2.0 async engine.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    """Owns the engine and hands out read or write sessions."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def connected(self) -> bool:
        return self._session_factory is not None

    async def connect(self) -> None:
        """Create the async engine and session factory. Safe to call twice."""
        if self._engine is not None:
            return
        self._engine = create_async_engine(
            self._settings.database_url_str,
            pool_size=self._settings.db_pool_min,
            max_overflow=max(0, self._settings.db_pool_max - self._settings.db_pool_min),
            pool_pre_ping=True,
            pool_recycle=300,
            echo=self._settings.debug,
            connect_args={"command_timeout": self._settings.db_command_timeout},
        )
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("database_connected", url=self._settings.database_url_safe_log)

    async def disconnect(self) -> None:
        """Dispose of the engine and all pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("database_disconnected")

    async def ping(self) -> None:
        """Round-trip a trivial query so a bad URL fails before any browser is launched."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.debug("database_ping_ok")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseManager not connected.")
        return self._engine

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not connected.")
        return self._session_factory

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        """Session for pending-subject queries; never commits."""
        async with self._factory()() as session:
            yield session

    @asynccontextmanager
    async def write_session(self) -> AsyncIterator[AsyncSession]:
        """Transactional session that commits on success and rolls back on error."""
        async with self._factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
