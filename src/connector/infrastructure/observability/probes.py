"""Connection probe for the outbox store."""

from __future__ import annotations

from typing import Protocol

import structlog


class ConnectionProbe(Protocol):
    """Domain probe for outbox store connection observability."""

    def connection_established(self, host: str, database: str) -> None:
        """Record that the store answered the startup connectivity check."""
        ...

    def connection_failed(self, host: str, database: str, error: Exception) -> None:
        """Record that the store could not be reached at startup."""
        ...

    def pool_disposed(self, host: str, database: str) -> None:
        """Record that every pooled connection was closed."""
        ...


class DefaultConnectionProbe:
    """ConnectionProbe that writes structlog events."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None):
        self._logger = logger or structlog.get_logger()

    def connection_established(self, host: str, database: str) -> None:
        self._logger.info("outbox_store_reachable", host=host, database=database)

    def connection_failed(self, host: str, database: str, error: Exception) -> None:
        self._logger.error(
            "outbox_store_unreachable",
            host=host,
            database=database,
            error=str(error),
            error_type=type(error).__name__,
        )

    def pool_disposed(self, host: str, database: str) -> None:
        self._logger.info("outbox_store_disposed", host=host, database=database)
