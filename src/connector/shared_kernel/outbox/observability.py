"""Observability probes for the outbox worker.

Following Domain Oriented Observability, probes capture domain-significant
events and metrics without cluttering business logic with logging concerns.
"""

from __future__ import annotations

from typing import Protocol

import structlog

logger = structlog.get_logger()


class OutboxWorkerProbe(Protocol):
    """Protocol for outbox worker observability.

    Implementations can log, emit metrics, or send traces.
    """

    def worker_started(self, worker_id: str, max_retries: int) -> None:
        """Called when the worker starts."""
        ...

    def worker_stopped(self) -> None:
        """Called when the worker stops."""
        ...

    def listen_loop_started(self) -> None:
        """Called when the notification-driven drain loop starts."""
        ...

    def poll_loop_started(self) -> None:
        """Called when the poll loop starts."""
        ...

    def poll_loop_error(self, error: str) -> None:
        """Called when an error occurs in the poll loop."""
        ...

    def burst_iteration_failed(self, error: str, iteration: int) -> None:
        """Called when one iteration of a notification burst raises."""
        ...

    def burst_drained(self, cycles: int) -> None:
        """Called when a notification burst finishes."""
        ...

    def event_claimed(self, entry_id: int, txid: int, patient_id: int | None) -> None:
        """Called when a single row lease is acquired."""
        ...

    def group_claimed(self, txid: int, patient_id: int | None, count: int) -> None:
        """Called when the rows of a group have been leased."""
        ...

    def group_claim_fallback(
        self, txid: int, patient_id: int | None, error: str | None
    ) -> None:
        """Called when the group claim re-reads rows leased by this worker."""
        ...

    def group_race_lost(self, entry_id: int, txid: int) -> None:
        """Called when a group claim returns no rows after a single claim."""
        ...

    def group_processed(
        self,
        txid: int,
        count: int,
        resource_id: str | None,
        resource_version: str | None,
    ) -> None:
        """Called when a group is delivered and marked processed."""
        ...

    def retry_scheduled(
        self, txid: int, count: int, error: str, status: int | None
    ) -> None:
        """Called when a group fails with a retryable status."""
        ...

    def group_moved_to_dlq(
        self, txid: int, count: int, error: str, status: int | None
    ) -> None:
        """Called when a group is moved to the dead-letter table."""
        ...

    def lease_lost(self, txid: int, count: int) -> None:
        """Called when a delivered group was no longer leased by this worker."""
        ...

    def duplicate_event_key(self, event_key: str, txid: int) -> None:
        """Called when the ledger already holds the key of a delivered group."""
        ...


class DefaultOutboxWorkerProbe:
    """Default implementation using structlog.

    Logs all worker events with appropriate log levels and keeps the
    processed/failed row counters the connector reports.
    """

    def __init__(self) -> None:
        """Initialize the probe with a logger and zeroed counters."""
        self._log = logger.bind(component="outbox_worker")
        self.processed_total = 0
        self.failed_total = 0

    def worker_started(self, worker_id: str, max_retries: int) -> None:
        """Log worker start.

        max_retries is reported but not enforced; retry decisions are
        status-based only.
        """
        self._log.info(
            "outbox_worker_started",
            worker_id=worker_id,
            max_retries=max_retries,
        )

    def worker_stopped(self) -> None:
        """Log worker stop."""
        self._log.info(
            "outbox_worker_stopped",
            processed_total=self.processed_total,
            failed_total=self.failed_total,
        )

    def listen_loop_started(self) -> None:
        """Log drain loop start."""
        self._log.info("outbox_listen_loop_started")

    def poll_loop_started(self) -> None:
        """Log poll loop start."""
        self._log.info("outbox_poll_loop_started")

    def poll_loop_error(self, error: str) -> None:
        """Log poll loop error."""
        self._log.warning("outbox_poll_loop_error", error=error)

    def burst_iteration_failed(self, error: str, iteration: int) -> None:
        """Log a failed burst iteration."""
        self._log.error(
            "outbox_burst_iteration_failed",
            error=error,
            iteration=iteration,
        )

    def burst_drained(self, cycles: int) -> None:
        """Log burst completion."""
        if cycles > 0:
            self._log.debug("outbox_burst_drained", cycles=cycles)

    def event_claimed(self, entry_id: int, txid: int, patient_id: int | None) -> None:
        """Log single row claim."""
        self._log.debug(
            "outbox_event_claimed",
            entry_id=entry_id,
            txid=txid,
            patient_id=patient_id,
        )

    def group_claimed(self, txid: int, patient_id: int | None, count: int) -> None:
        """Log group claim."""
        self._log.debug(
            "outbox_group_claimed",
            txid=txid,
            patient_id=patient_id,
            count=count,
        )

    def group_claim_fallback(
        self, txid: int, patient_id: int | None, error: str | None
    ) -> None:
        """Log group claim fallback re-read."""
        if error is None:
            self._log.debug(
                "outbox_group_claim_fallback",
                txid=txid,
                patient_id=patient_id,
            )
        else:
            self._log.error(
                "outbox_group_claim_fallback",
                txid=txid,
                patient_id=patient_id,
                error=error,
            )

    def group_race_lost(self, entry_id: int, txid: int) -> None:
        """Log empty group after claim."""
        self.failed_total += 1
        self._log.warning(
            "outbox_group_race_lost",
            entry_id=entry_id,
            txid=txid,
        )

    def group_processed(
        self,
        txid: int,
        count: int,
        resource_id: str | None,
        resource_version: str | None,
    ) -> None:
        """Log successful delivery."""
        self.processed_total += count
        self._log.info(
            "outbox_group_processed",
            txid=txid,
            count=count,
            fhir_id=resource_id,
            fhir_version=resource_version,
        )

    def retry_scheduled(
        self, txid: int, count: int, error: str, status: int | None
    ) -> None:
        """Log retry scheduling."""
        self.failed_total += count
        self._log.warning(
            "outbox_retry_scheduled",
            txid=txid,
            count=count,
            status=status,
            error=error,
        )

    def group_moved_to_dlq(
        self, txid: int, count: int, error: str, status: int | None
    ) -> None:
        """Log group moved to dead-letter table."""
        self.failed_total += count
        self._log.error(
            "outbox_group_moved_to_dlq",
            txid=txid,
            count=count,
            status=status,
            error=error,
        )

    def lease_lost(self, txid: int, count: int) -> None:
        """Log a delivery whose lease had been taken over."""
        self._log.warning("outbox_lease_lost", txid=txid, count=count)

    def duplicate_event_key(self, event_key: str, txid: int) -> None:
        """Log a ledger key collision; the rows stay processed."""
        self._log.error(
            "outbox_duplicate_event_key",
            event_key=event_key,
            txid=txid,
        )


class EventSourceProbe(Protocol):
    """Protocol for event source observability.

    Implementations can log, emit metrics, or send traces for event source
    lifecycle and notification handling.
    """

    def event_source_started(self, channel: str) -> None:
        """Called when the event source starts listening."""
        ...

    def event_source_stopped(self) -> None:
        """Called when the event source stops."""
        ...

    def notification_received(self, payload: str | None) -> None:
        """Called when a notification is received."""
        ...

    def listener_error(self, error: str) -> None:
        """Called when an error occurs in the listener."""
        ...


class DefaultEventSourceProbe:
    """Default implementation using structlog."""

    def __init__(self) -> None:
        """Initialize the probe with a logger."""
        self._log = logger.bind(component="event_source")

    def event_source_started(self, channel: str) -> None:
        """Log event source start."""
        self._log.info("event_source_started", channel=channel)

    def event_source_stopped(self) -> None:
        """Log event source stop."""
        self._log.info("event_source_stopped")

    def notification_received(self, payload: str | None) -> None:
        """Log notification received."""
        self._log.debug("notification_received", payload=payload)

    def listener_error(self, error: str) -> None:
        """Log listener error."""
        self._log.error("event_source_listener_error", error=error)
