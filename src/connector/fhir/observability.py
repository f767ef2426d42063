"""Domain probe for FHIR server calls.

Following Domain-Oriented Observability patterns, this probe captures
latency and failures of the outbound writes.
"""

from __future__ import annotations

from typing import Protocol

import structlog


class FhirClientProbe(Protocol):
    """Domain probe for FHIR client operations."""

    def call_succeeded(self, url: str, elapsed_seconds: float) -> None:
        """Record a successful write and its latency."""
        ...

    def call_failed(
        self,
        url: str,
        elapsed_seconds: float,
        reason: str,
        status_code: int | None = None,
    ) -> None:
        """Record a failed write, its latency and status (if any)."""
        ...


class DefaultFhirClientProbe:
    """Default implementation of FhirClientProbe using structlog.

    Keeps a running count of failed calls.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None):
        self._logger = logger or structlog.get_logger()
        self.call_errors_total = 0

    def call_succeeded(self, url: str, elapsed_seconds: float) -> None:
        """Record a successful write and its latency."""
        self._logger.debug(
            "fhir_call_succeeded",
            url=url,
            latency_seconds=round(elapsed_seconds, 4),
        )

    def call_failed(
        self,
        url: str,
        elapsed_seconds: float,
        reason: str,
        status_code: int | None = None,
    ) -> None:
        """Record a failed write, its latency and status (if any)."""
        self.call_errors_total += 1
        self._logger.error(
            "fhir_call_failed",
            url=url,
            latency_seconds=round(elapsed_seconds, 4),
            reason=reason,
            status_code=status_code,
        )
