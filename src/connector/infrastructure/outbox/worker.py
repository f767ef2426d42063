"""Outbox worker delivering grouped change rows to the FHIR server.

The worker runs two independent wake-up paths against one claim-and-process
cycle:
1. LISTEN/NOTIFY: each notification triggers a bounded burst of cycles
2. Polling: one cycle every poll interval, catching missed notifications

Both paths may overlap. Mutual exclusion comes only from the atomic claim
in the database, so no in-process lock is taken.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Sequence
from typing import TYPE_CHECKING

from infrastructure.outbox.resolver import is_retryable_status
from shared_kernel.outbox.exceptions import DeliveryFailed
from shared_kernel.outbox.merge import merge_payloads
from shared_kernel.outbox.value_objects import (
    DeliveryResult,
    OutboxEvent,
    ProcessOutcome,
)

if TYPE_CHECKING:
    from infrastructure.database.store import OutboxStore
    from infrastructure.outbox.claims import ClaimCoordinator
    from infrastructure.outbox.resolver import OutcomeResolver
    from shared_kernel.outbox.observability import OutboxWorkerProbe
    from shared_kernel.outbox.ports import (
        DeliveryGateway,
        OutboxEventSource,
        ResourceMapper,
    )

EMPTY_GROUP_ERROR = "Empty group after claim"
NO_IDENTIFIER_ERROR = "No identifier available for conditional update"


class OutboxWorker:
    """Background worker that claims outbox groups and delivers them.

    Each cycle claims the oldest eligible row, leases the rest of its
    (txid, patient_id) group, merges the payloads, maps them to a resource
    and hands it to the delivery gateway. The outcome is committed by the
    resolver. Every step runs in its own session so that leases are visible
    to other workers before the downstream call is made.
    """

    def __init__(
        self,
        store: OutboxStore,
        coordinator: ClaimCoordinator,
        resolver: OutcomeResolver,
        gateway: DeliveryGateway,
        mapper: ResourceMapper,
        event_source: OutboxEventSource,
        probe: OutboxWorkerProbe,
        poll_interval_seconds: float = 2.0,
        burst_limit: int = 5,
        max_retries: int = 5,
        error_backoff_seconds: float = 0.2,
    ) -> None:
        """Initialize the worker.

        Args:
            store: Handle to the outbox database
            coordinator: Lease acquisition for rows and groups
            resolver: Commits delivery outcomes
            gateway: Downstream delivery client
            mapper: Builds the downstream resource from a merged payload
            event_source: Source of change notifications
            probe: Observability probe for logging/metrics
            poll_interval_seconds: Seconds between fallback poll cycles
            burst_limit: Maximum cycles run per notification
            max_retries: Reported at startup; retry decisions do not use it
            error_backoff_seconds: Pause after a failed burst iteration
        """
        self._store = store
        self._coordinator = coordinator
        self._resolver = resolver
        self._gateway = gateway
        self._mapper = mapper
        self._event_source = event_source
        self._probe = probe
        self._poll_interval = poll_interval_seconds
        self._burst_limit = burst_limit
        self._max_retries = max_retries
        self._error_backoff = error_backoff_seconds
        self._running = False
        self._stopping = asyncio.Event()
        self._wake = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._listen_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        """True between start() and stop()."""
        return self._running

    async def start(self) -> None:
        """Start the notification listener, the drain loop and the poll loop.

        Must only be called once the store is known to be reachable.
        """
        if self._running:
            return
        self._running = True
        self._stopping.clear()
        self._probe.worker_started(self._coordinator.worker_id, self._max_retries)

        self._tasks = [
            asyncio.create_task(self._drain_loop()),
            asyncio.create_task(self._poll_loop()),
        ]
        self._listen_task = asyncio.create_task(
            self._event_source.start(self._on_notification)
        )

    async def stop(self) -> None:
        """Gracefully stop the worker.

        Ends the notification subscription first, then signals both loops
        and waits for them. A cycle that is already running is allowed to
        finish; the store itself is disposed by the caller.
        """
        if not self._running:
            return
        self._running = False

        await self._event_source.stop()
        if self._listen_task is not None:
            await self._listen_task
            self._listen_task = None

        self._stopping.set()
        self._wake.set()
        await asyncio.gather(*self._tasks)
        self._tasks.clear()

        self._probe.worker_stopped()

    async def process_claimed(self) -> ProcessOutcome:
        """Run one claim-and-process cycle.

        Store errors propagate to the caller. The rows involved keep their
        lease until it expires and are then claimed again.

        Returns:
            What the cycle did; IDLE if no row was claimable
        """
        async with self._store.session() as session:
            claimed = await self._coordinator.claim_one(session)
            await session.commit()
        if claimed is None:
            return ProcessOutcome.IDLE

        async with self._store.session() as session:
            rows = await self._coordinator.claim_group(
                session, claimed.txid, claimed.patient_id
            )
            await session.commit()

        if not rows:
            self._probe.group_race_lost(claimed.id, claimed.txid)
            async with self._store.session() as session:
                await self._resolver.schedule_retry(
                    session, [claimed], EMPTY_GROUP_ERROR
                )
                await session.commit()
            return ProcessOutcome.RACE_LOST

        return await self._deliver_group(rows)

    async def drain_burst(self) -> int:
        """Run cycles until one finds no work or the burst limit is reached.

        A failed cycle is logged and followed by a short pause; the burst
        then continues with the next cycle.

        Returns:
            Number of cycles that claimed a row
        """
        cycles = 0
        for iteration in range(self._burst_limit):
            if self._stopping.is_set():
                break
            try:
                outcome = await self.process_claimed()
            except Exception as e:
                self._probe.burst_iteration_failed(str(e), iteration)
                await asyncio.sleep(self._error_backoff)
                continue
            if not outcome.did_work:
                break
            cycles += 1

        self._probe.burst_drained(cycles)
        return cycles

    async def _deliver_group(self, rows: Sequence[OutboxEvent]) -> ProcessOutcome:
        """Deliver a leased group and commit the outcome."""
        resource = self._mapper(merge_payloads(rows))
        identifiers = resource.get("identifier") or []
        prior_id = next(
            (row.fhir_resource_id for row in rows if row.fhir_resource_id), None
        )

        if not identifiers and prior_id is None:
            async with self._store.session() as session:
                await self._resolver.dead_letter(session, rows, NO_IDENTIFIER_ERROR)
                await session.commit()
            return ProcessOutcome.DEAD_LETTERED

        try:
            result = await self._send(resource, identifiers, prior_id)
        except DeliveryFailed as e:
            return await self._resolve_failure(rows, e)

        async with self._store.session() as session:
            completed = await self._resolver.complete(
                session, rows, result, rows[0].event_key
            )
            await session.commit()
        if not completed:
            self._probe.lease_lost(rows[0].txid, len(rows))
        return ProcessOutcome.DELIVERED

    async def _send(
        self,
        resource: dict,
        identifiers: list[dict],
        prior_id: str | None,
    ) -> DeliveryResult:
        # The first identifier is the primary one written by the mapper
        if identifiers:
            primary = identifiers[0]
            return await self._gateway.deliver_conditional(
                primary["system"], primary["value"], resource
            )
        return await self._gateway.deliver_by_id(prior_id, resource)

    async def _resolve_failure(
        self, rows: Sequence[OutboxEvent], failure: DeliveryFailed
    ) -> ProcessOutcome:
        async with self._store.session() as session:
            if is_retryable_status(failure.status):
                await self._resolver.schedule_retry(
                    session, rows, failure.detail, failure.status
                )
                outcome = ProcessOutcome.RETRY_SCHEDULED
            else:
                await self._resolver.dead_letter(
                    session, rows, failure.detail, failure.status
                )
                outcome = ProcessOutcome.DEAD_LETTERED
            await session.commit()
        return outcome

    async def _on_notification(self, payload: str | None) -> None:
        """Wake the drain loop. Signals raised during a burst coalesce."""
        self._wake.set()

    async def _drain_loop(self) -> None:
        """Run one burst per wake-up until the worker stops."""
        self._probe.listen_loop_started()

        while True:
            await self._wake.wait()
            if self._stopping.is_set():
                break
            self._wake.clear()
            await self.drain_burst()

    async def _poll_loop(self) -> None:
        """Fallback polling for rows whose notification was missed.

        Also picks up rows whose retry backoff has elapsed, which emit no
        notification of their own.
        """
        self._probe.poll_loop_started()

        while not self._stopping.is_set():
            try:
                await self.process_claimed()
            except Exception as e:
                self._probe.poll_loop_error(str(e))

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self._poll_interval
                )
