"""Commits the outcome of a delivery attempt back to the outbox store.

Every mutation is restricted to rows still leased by this worker. If the
lease expired during delivery and another worker took the group over, the
statements here match nothing and that worker's outcome stands.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Interval, delete, func, literal_column, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.outbox.models import (
    DeadLetterModel,
    OutboxModel,
    ProcessedEventModel,
)
from shared_kernel.outbox.value_objects import (
    DeadLetterEntry,
    DeliveryResult,
    OutboxEvent,
)

if TYPE_CHECKING:
    from shared_kernel.outbox.observability import OutboxWorkerProbe

RETRY_STEP = literal_column("interval '1 minute'", type_=Interval)


def is_retryable_status(status: int | None) -> bool:
    """Decide whether a failed delivery should be retried.

    No status (timeouts, connection errors) is retryable, as are server
    errors and 429. Any other known status is a permanent rejection.
    """
    if not status:
        return True
    return status >= 500 or status == 429


class OutcomeResolver:
    """Moves a claimed group to processed, retry-scheduled or dead-lettered.

    The resolver never commits; the caller owns the transaction.
    """

    def __init__(self, worker_id: str, probe: OutboxWorkerProbe) -> None:
        """Initialize the resolver.

        Args:
            worker_id: Identity of the lease holder whose rows may be mutated
            probe: Observability probe for logging/metrics
        """
        self._worker_id = worker_id
        self._probe = probe

    async def complete(
        self,
        session: AsyncSession,
        rows: Sequence[OutboxEvent],
        result: DeliveryResult,
        event_key: str,
    ) -> bool:
        """Mark a delivered group processed and record it in the ledger.

        The ledger entry is only written when this worker still held the
        lease on at least one row. It is inserted under a savepoint: a
        duplicate event_key is reported and rolled back alone, and the rows
        stay processed.

        Args:
            session: The database session
            rows: The delivered group
            result: Downstream resource id and version
            event_key: Idempotency key of the group

        Returns:
            True if the group was marked processed by this worker
        """
        stmt = (
            update(OutboxModel)
            .where(OutboxModel.id.in_([row.id for row in rows]))
            .where(OutboxModel.locked_by == self._worker_id)
            .values(
                processed=True,
                processed_at=func.now(),
                fhir_resource_id=result.resource_id,
                fhir_version=result.resource_version,
                locked_by=None,
                lock_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        outcome = await session.execute(stmt)
        if outcome.rowcount == 0:
            return False

        try:
            async with session.begin_nested():
                session.add(
                    ProcessedEventModel(
                        event_key=event_key, processed_at=datetime.now(UTC)
                    )
                )
                await session.flush()
        except IntegrityError:
            self._probe.duplicate_event_key(event_key, rows[0].txid)

        self._probe.group_processed(
            rows[0].txid,
            outcome.rowcount,
            result.resource_id,
            result.resource_version,
        )
        return True

    async def schedule_retry(
        self,
        session: AsyncSession,
        rows: Sequence[OutboxEvent],
        error: str,
        status: int | None = None,
    ) -> None:
        """Release the group for a later attempt with linear backoff.

        next_retry_at is now + 1 minute * greatest(attempts, 1), evaluated
        against the attempts value stored before this increment.

        Args:
            session: The database session
            rows: The failed group
            error: Error text stored as last_error
            status: HTTP status of the failure, if any
        """
        stmt = (
            update(OutboxModel)
            .where(OutboxModel.id.in_([row.id for row in rows]))
            .where(OutboxModel.locked_by == self._worker_id)
            .values(
                attempts=OutboxModel.attempts + 1,
                last_error=error,
                next_retry_at=func.now()
                + RETRY_STEP * func.greatest(OutboxModel.attempts, 1),
                locked_by=None,
                lock_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        self._probe.retry_scheduled(rows[0].txid, len(rows), error, status)

    async def dead_letter(
        self,
        session: AsyncSession,
        rows: Sequence[OutboxEvent],
        error: str,
        status: int | None = None,
    ) -> None:
        """Move the group to the dead-letter table.

        Rows are deleted from the outbox and a snapshot of each deleted row
        is written to the dead-letter table in the same transaction.

        Args:
            session: The database session
            rows: The failed group
            error: Error text stored on each dead-letter entry
            status: HTTP status of the failure, if any
        """
        stmt = (
            delete(OutboxModel)
            .where(OutboxModel.id.in_([row.id for row in rows]))
            .where(OutboxModel.locked_by == self._worker_id)
            .returning(OutboxModel.id)
            .execution_options(synchronize_session=False)
        )
        outcome = await session.execute(stmt)
        deleted = set(outcome.scalars().all())

        failed_at = datetime.now(UTC)
        for row in rows:
            if row.id not in deleted:
                continue
            entry = DeadLetterEntry(
                outbox_id=row.id,
                txid=row.txid,
                table_name=row.table_name,
                record_id=row.record_id,
                operation=row.operation,
                payload=row.payload,
                error_text=error,
                attempts=row.attempts,
                first_failed_at=failed_at,
                last_failed_at=failed_at,
            )
            session.add(DeadLetterModel.from_value_object(entry))
        await session.flush()

        self._probe.group_moved_to_dlq(rows[0].txid, len(deleted), error, status)
