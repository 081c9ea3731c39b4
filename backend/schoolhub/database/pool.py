"""
Database connection pool service.

DatabasePool owns the process-wide SQLAlchemy AsyncEngine. It is constructed
explicitly at application startup and passed to whatever needs connections
(tenant resolver, tenant directory, scripts) instead of being imported as a
module-level singleton, so tests can substitute their own pool.

Usage:
    pool = DatabasePool.from_settings(settings)
    await pool.startup()
    connection = await pool.connect()
    ...
    await pool.shutdown()
"""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from schoolhub.config.settings import Settings

logger = logging.getLogger(__name__)


class DatabasePool:
    """Shared pool of connections to one physical database."""

    def __init__(
        self,
        database_url: str,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
    ):
        self._database_url = database_url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._pool_timeout = pool_timeout
        self._pool_recycle = pool_recycle
        self._engine: Optional[AsyncEngine] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabasePool":
        return cls(
            settings.require_database_url(),
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_recycle=settings.pool_recycle,
        )

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabasePool used before startup()")
        return self._engine

    @property
    def is_started(self) -> bool:
        return self._engine is not None

    async def startup(self) -> None:
        """
        Create the engine.

        Uses connection pooling with sensible defaults for production:
        - pool_size: 5 connections
        - max_overflow: 10 additional connections under load
        - pool_pre_ping: Verify connections before use
        """
        if self._engine is not None:
            return
        self._engine = create_async_engine(
            self._database_url,
            pool_size=self._pool_size,
            max_overflow=self._max_overflow,
            pool_timeout=self._pool_timeout,
            pool_recycle=self._pool_recycle,
            pool_pre_ping=True,
        )
        logger.info(
            "Database engine created with connection pooling",
            extra={"pool_size": self._pool_size, "max_overflow": self._max_overflow},
        )

    async def shutdown(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        logger.info("Database engine disposed")

    async def connect(self) -> AsyncConnection:
        """
        Check a connection out of the pool.

        Pool exhaustion (TimeoutError) and connectivity errors propagate to
        the caller; they are operational failures, not client mistakes.
        """
        return await self.engine.connect()

    async def ping(self) -> bool:
        """Round-trip a trivial query; used by the health endpoint."""
        connection = await self.connect()
        try:
            await connection.execute(text("SELECT 1"))
            return True
        finally:
            await connection.close()
