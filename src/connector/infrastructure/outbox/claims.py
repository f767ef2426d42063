"""Lease-based claiming of outbox rows.

A claim is a single conditional UPDATE ... RETURNING statement: the
eligibility predicate is evaluated and the lease written atomically, so
concurrent workers never both win the same row. Leases expire on their own,
which lets any worker pick up rows abandoned by a crashed one.

Leases are fixed-length and never renewed. A delivery that outlives the
lease can be claimed and delivered a second time by another worker; the
downstream write is idempotent and the HTTP timeout is configured below the
lease duration to keep that window closed in practice.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.outbox.models import OutboxModel
from shared_kernel.outbox.value_objects import OutboxEvent

if TYPE_CHECKING:
    from shared_kernel.outbox.observability import OutboxWorkerProbe

LEASE_DURATION = timedelta(seconds=30)


def retry_due() -> ColumnElement[bool]:
    """Rows with no pending backoff, or whose backoff has elapsed."""
    return or_(
        OutboxModel.next_retry_at.is_(None),
        OutboxModel.next_retry_at <= func.now(),
    )


def lease_free() -> ColumnElement[bool]:
    """Rows nobody holds, or whose lease has expired."""
    return or_(
        OutboxModel.locked_by.is_(None),
        OutboxModel.lock_expires_at <= func.now(),
    )


def claimable() -> ColumnElement[bool]:
    """The eligibility predicate for claiming a row."""
    return and_(
        OutboxModel.processed.is_(False),
        retry_due(),
        lease_free(),
    )


def same_patient(patient_id: int | None) -> ColumnElement[bool]:
    """Match a patient id, where None only matches NULL."""
    if patient_id is None:
        return OutboxModel.patient_id.is_(None)
    return OutboxModel.patient_id == patient_id


class ClaimCoordinator:
    """Acquires leases on single rows and on whole groups.

    The coordinator never commits; the caller commits so the lease becomes
    visible to other workers before the downstream call is made.
    """

    def __init__(self, worker_id: str, probe: OutboxWorkerProbe) -> None:
        """Initialize the coordinator.

        Args:
            worker_id: Identity written to locked_by when leasing
            probe: Observability probe for logging/metrics
        """
        self._worker_id = worker_id
        self._probe = probe

    @property
    def worker_id(self) -> str:
        """Identity of the lease holder."""
        return self._worker_id

    async def claim_one(self, session: AsyncSession) -> OutboxEvent | None:
        """Lease the oldest claimable row.

        The candidate is picked with FOR UPDATE SKIP LOCKED inside the UPDATE,
        and the eligibility predicate is re-checked on the row being updated.
        The candidate subquery must not correlate to the updated table, or
        it would be evaluated per row instead of once.

        Args:
            session: The database session

        Returns:
            The leased row, or None if nothing is claimable
        """
        candidate = (
            select(OutboxModel.id)
            .where(claimable())
            .order_by(OutboxModel.created_at, OutboxModel.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .correlate(None)
            .scalar_subquery()
        )
        stmt = (
            update(OutboxModel)
            .where(OutboxModel.id == candidate)
            .where(claimable())
            .values(
                locked_by=self._worker_id,
                lock_expires_at=func.now() + LEASE_DURATION,
            )
            .returning(OutboxModel)
            .execution_options(synchronize_session=False)
        )

        result = await session.execute(stmt)
        model = result.scalars().first()
        if model is None:
            return None

        event = model.to_value_object()
        self._probe.event_claimed(event.id, event.txid, event.patient_id)
        return event

    async def claim_group(
        self,
        session: AsyncSession,
        txid: int,
        patient_id: int | None,
    ) -> list[OutboxEvent]:
        """Lease every claimable row of a (txid, patient_id) group.

        Rows already leased by this worker are included, so the row taken by
        claim_one belongs to its own group.

        If the UPDATE ... RETURNING fails or returns nothing, rows currently
        leased by this worker are re-read instead. That filter is built from
        locked_by = worker_id; the lease_free() predicate no longer holds for
        rows this worker has just leased.

        Args:
            session: The database session
            txid: Source transaction id
            patient_id: Patient correlation id (None matches NULL only)

        Returns:
            The leased rows ordered by id (empty if another worker won the race)
        """
        stmt = (
            update(OutboxModel)
            .where(OutboxModel.processed.is_(False))
            .where(OutboxModel.txid == txid)
            .where(same_patient(patient_id))
            .where(retry_due())
            .where(or_(lease_free(), OutboxModel.locked_by == self._worker_id))
            .values(
                locked_by=self._worker_id,
                lock_expires_at=func.now() + LEASE_DURATION,
            )
            .returning(OutboxModel)
            .execution_options(synchronize_session=False)
        )

        error: str | None = None
        models: list[OutboxModel] = []
        try:
            async with session.begin_nested():
                result = await session.execute(stmt)
                models = list(result.scalars().all())
        except SQLAlchemyError as e:
            error = str(e)

        if not models:
            self._probe.group_claim_fallback(txid, patient_id, error)
            models = await self._fetch_leased(session, txid, patient_id)

        events = sorted((m.to_value_object() for m in models), key=lambda e: e.id)
        self._probe.group_claimed(txid, patient_id, len(events))
        return events

    async def _fetch_leased(
        self,
        session: AsyncSession,
        txid: int,
        patient_id: int | None,
    ) -> list[OutboxModel]:
        """Re-read the unprocessed rows of a group leased by this worker."""
        stmt = (
            select(OutboxModel)
            .where(OutboxModel.processed.is_(False))
            .where(OutboxModel.txid == txid)
            .where(same_patient(patient_id))
            .where(OutboxModel.locked_by == self._worker_id)
            .order_by(OutboxModel.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
