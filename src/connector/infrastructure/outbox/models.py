"""SQLAlchemy ORM models for the FHIR outbox.

This module maps the three tables the connector works against: the outbox
written by upstream triggers, the dead-letter table and the idempotency
ledger.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, Boolean, CHAR, DateTime, Integer, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from infrastructure.database.models import Base
from shared_kernel.outbox.value_objects import DeadLetterEntry, OutboxEvent


class OutboxModel(Base):
    """ORM model for the fhir_outbox table.

    Rows are durable change events recorded by database triggers. Rows that
    share txid and patient_id are delivered together as one group.

    The (locked_by, lock_expires_at) pair is the claim lease; a row with an
    expired lease is claimable again by any worker.
    """

    __tablename__ = "fhir_outbox"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    txid: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    sequence_in_tx: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="1"
    )
    table_name: Mapped[str] = mapped_column(Text, nullable=False)
    record_id: Mapped[int] = mapped_column(Integer, nullable=False)
    operation: Mapped[str] = mapped_column(CHAR(1), nullable=False)  # I, U or D
    payload_json: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    patient_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    identifier_system: Mapped[str | None] = mapped_column(Text, nullable=True)
    identifier_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    )
    processed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Retry columns
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0"
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Lease columns
    locked_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    lock_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Delivery result
    fhir_resource_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    fhir_version: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_value_object(self) -> OutboxEvent:
        """Convert this ORM model to an OutboxEvent value object.

        Returns:
            An immutable OutboxEvent with all fields copied from this model.
        """
        return OutboxEvent(
            id=self.id,
            txid=self.txid,
            sequence_in_tx=self.sequence_in_tx,
            table_name=self.table_name,
            record_id=self.record_id,
            operation=self.operation,
            payload=self.payload_json,
            created_at=self.created_at,
            patient_id=self.patient_id,
            identifier_system=self.identifier_system,
            identifier_value=self.identifier_value,
            processed=self.processed,
            processed_at=self.processed_at,
            attempts=self.attempts,
            next_retry_at=self.next_retry_at,
            locked_by=self.locked_by,
            lock_expires_at=self.lock_expires_at,
            fhir_resource_id=self.fhir_resource_id,
            fhir_version=self.fhir_version,
            last_error=self.last_error,
        )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<OutboxModel("
            f"id={self.id}, "
            f"txid={self.txid}, "
            f"patient_id={self.patient_id}, "
            f"processed={self.processed}, "
            f"attempts={self.attempts}, "
            f"locked_by={self.locked_by}"
            f")>"
        )


class DeadLetterModel(Base):
    """ORM model for the fhir_dlq table.

    Holds a snapshot of every outbox row that failed permanently. Entries
    are written once and never updated by the connector.
    """

    __tablename__ = "fhir_dlq"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    outbox_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    txid: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    table_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    record_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    operation: Mapped[str | None] = mapped_column(CHAR(1), nullable=True)
    payload_json: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    error_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0"
    )
    first_failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    )
    last_failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    )

    @classmethod
    def from_value_object(cls, entry: DeadLetterEntry) -> DeadLetterModel:
        """Build a model from a DeadLetterEntry value object."""
        return cls(
            outbox_id=entry.outbox_id,
            txid=entry.txid,
            table_name=entry.table_name,
            record_id=entry.record_id,
            operation=entry.operation,
            payload_json=entry.payload,
            error_text=entry.error_text,
            attempts=entry.attempts,
            first_failed_at=entry.first_failed_at,
            last_failed_at=entry.last_failed_at,
        )


class ProcessedEventModel(Base):
    """ORM model for the fhir_processed_event idempotency ledger.

    One row per delivered group. event_key is unique, so a second insert
    for the same key raises an IntegrityError.
    """

    __tablename__ = "fhir_processed_event"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    event_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    )
