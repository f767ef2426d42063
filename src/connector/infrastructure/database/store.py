"""Explicit handle to the outbox store.

The process entry point constructs one OutboxStore and passes it to every
component that talks to the database. There are no module-level engines.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from infrastructure.database.engines import create_engine
from infrastructure.database.exceptions import DatabaseConnectionError
from infrastructure.observability.probes import (
    ConnectionProbe,
    DefaultConnectionProbe,
)

if TYPE_CHECKING:
    from infrastructure.settings import DatabaseSettings


class OutboxStore:
    """Owns the async engine (connection pool) and creates sessions from it.

    Sessions are configured with expire_on_commit=False so that rows read
    before a commit stay usable afterwards; the worker commits the lease
    before calling the downstream service.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        host: str = "",
        database: str = "",
        probe: ConnectionProbe | None = None,
    ) -> None:
        """Initialize the store with an engine.

        Args:
            engine: The async engine shared process-wide
            host: Database host (for observability only)
            database: Database name (for observability only)
            probe: Optional observability probe
        """
        self._engine = engine
        self._host = host
        self._database = database
        self._probe = probe or DefaultConnectionProbe()
        self._sessionmaker = async_sessionmaker(
            engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )

    @classmethod
    def from_settings(
        cls,
        settings: DatabaseSettings,
        probe: ConnectionProbe | None = None,
    ) -> OutboxStore:
        """Build a store with a new engine from connection settings."""
        return cls(
            create_engine(settings),
            host=settings.host,
            database=settings.database,
            probe=probe,
        )

    @property
    def engine(self) -> AsyncEngine:
        """The underlying async engine."""
        return self._engine

    async def verify_connectivity(self) -> None:
        """Check that the database answers a trivial query.

        Raises:
            DatabaseConnectionError: If the database cannot be reached
        """
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            self._probe.connection_failed(
                host=self._host, database=self._database, error=e
            )
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e

        self._probe.connection_established(host=self._host, database=self._database)

    def session(self) -> AsyncSession:
        """Create a new session. Use it as an async context manager."""
        return self._sessionmaker()

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self._engine.dispose()
        self._probe.pool_disposed(host=self._host, database=self._database)
