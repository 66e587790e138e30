"""
SQLAlchemy Async Client

Async wrapper around a SQLAlchemy engine and session factory.
"""

import asyncio
import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from sqlcacher.config import get_settings
from sqlcacher.monitoring.logging import mask_url_credentials

logger = structlog.get_logger(__name__)


class DatabaseClient:
    """
    Async SQLAlchemy client for sqlcacher.

    Owns the engine and hands out short-lived sessions for read queries.
    """

    def __init__(self, url: str | None = None, echo: bool | None = None):
        """
        Initialize database client.

        Args:
            url: Async SQLAlchemy URL (defaults to settings)
            echo: Echo SQL statements (defaults to settings)
        """
        settings = get_settings()
        self._url = url or settings.database_url
        self._echo = settings.database_echo if echo is None else echo

        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def url(self) -> str | None:
        return self._url

    async def connect(self) -> None:
        """Create the engine and session factory."""
        if self._engine is not None:
            return
        if not self._url:
            raise RuntimeError("No database URL configured. Set DATABASE_URL.")

        logger.info("database_connecting", url=mask_url_credentials(self._url))

        engine_kwargs: dict[str, Any] = {"echo": self._echo}
        if self._url.startswith("sqlite"):
            # A single shared connection keeps in-memory databases alive
            engine_kwargs["poolclass"] = StaticPool

        self._engine = create_async_engine(self._url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("database_connected")

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("database_closed")

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine, raising if not connected."""
        if self._engine is None:
            raise RuntimeError("Database client not connected. Call connect() first.")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a database session.

        Usage:
            async with client.session() as session:
                result = await session.execute(select(Widget))
        """
        if self._session_factory is None:
            raise RuntimeError("Database client not connected. Call connect() first.")
        async with self._session_factory() as session:
            yield session

    async def create_all(self, metadata: MetaData) -> None:
        """Create all tables for the given metadata."""
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)


# ═══════════════════════════════════════════════════════════════
# CLIENT SINGLETON
# ═══════════════════════════════════════════════════════════════

_db_client: DatabaseClient | None = None
_db_client_lock: asyncio.Lock | None = None
_lock_init_lock = threading.Lock()


def _get_lock() -> asyncio.Lock:
    """Get or create the singleton lock."""
    global _db_client_lock
    if _db_client_lock is None:
        with _lock_init_lock:
            if _db_client_lock is None:
                _db_client_lock = asyncio.Lock()
    return _db_client_lock


async def get_db_client() -> DatabaseClient:
    """
    Get the global database client instance.

    Creates and connects the client on first call.
    """
    global _db_client

    if _db_client is not None:
        return _db_client

    async with _get_lock():
        if _db_client is None:
            client = DatabaseClient()
            await client.connect()
            _db_client = client

    return _db_client


async def close_db_client() -> None:
    """Close the global database client."""
    global _db_client

    async with _get_lock():
        if _db_client is not None:
            await _db_client.close()
            _db_client = None
