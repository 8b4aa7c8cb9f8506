"""Async database connection and schema management.

One Database is created per process and passed to each store; nothing in
the application reaches a connection through module state. WAL mode is
enabled on SQLite for concurrent reads during a scan pass.
"""

from __future__ import annotations

import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .sqlmodels import Base

logger = logging.getLogger(__name__)


def _set_wal_mode(dbapi_connection, connection_record):
    """Enable WAL mode for concurrent reads during writes."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class Database:
    """Owns the async engine and session factory."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo)
        if url.startswith("sqlite"):
            event.listen(self.engine.sync_engine, "connect", _set_wal_mode)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def init(self):
        """Create all tables if they don't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized at %s", self.engine.url.render_as_string(hide_password=True))

    async def close(self):
        """Dispose of the engine's connection pool."""
        await self.engine.dispose()
