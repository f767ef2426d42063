"""Value objects for the outbox pattern.

Value objects are immutable descriptors that provide type safety and
domain semantics for outbox rows, dead-letter entries and delivery results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


@dataclass(frozen=True)
class OutboxEvent:
    """Represents a single raw change row in the outbox table.

    Rows are written by upstream database triggers. Several rows that share
    a transaction id and patient id form one delivery group.

    Attributes:
        id: Monotonic identity of the row
        txid: Source transaction id (groups rows from one commit)
        sequence_in_tx: Position of the change within the source transaction
        table_name: Source table that produced the change (e.g., "patients")
        record_id: Primary key of the changed source record
        operation: Change kind, one of "I", "U" or "D"
        payload: Semi-structured payload fragment
        created_at: When the trigger recorded the row
        patient_id: Patient correlation id (None if the change is not tied to one)
        identifier_system: External identifier system recorded by the trigger
        identifier_value: External identifier value recorded by the trigger
        processed: Whether the row has been delivered
        processed_at: When the row was delivered
        attempts: Number of failed delivery attempts so far
        next_retry_at: Earliest time the row may be claimed again
        locked_by: Worker holding the lease (None if unleased)
        lock_expires_at: When the current lease expires
        fhir_resource_id: Downstream resource id from the last delivery
        fhir_version: Downstream resource version from the last delivery
        last_error: The most recent delivery error (if any)
    """

    id: int
    txid: int
    sequence_in_tx: int
    table_name: str
    record_id: int
    operation: str
    payload: dict[str, Any] | None
    created_at: datetime
    patient_id: int | None = None
    identifier_system: str | None = None
    identifier_value: str | None = None
    processed: bool = False
    processed_at: datetime | None = None
    attempts: int = 0
    next_retry_at: datetime | None = None
    locked_by: str | None = None
    lock_expires_at: datetime | None = None
    fhir_resource_id: str | None = None
    fhir_version: str | None = None
    last_error: str | None = None

    @property
    def group_key(self) -> GroupKey:
        """The key shared by every row delivered together with this one."""
        return GroupKey(txid=self.txid, patient_id=self.patient_id)

    @property
    def event_key(self) -> str:
        """Stable idempotency key: ``<table_name>|<record_id>|<txid>``."""
        return f"{self.table_name}|{self.record_id}|{self.txid}"

    def is_leased_by_other(self, worker_id: str, now: datetime) -> bool:
        """Check if another worker holds a lease that has not expired yet."""
        if self.locked_by is None or self.locked_by == worker_id:
            return False
        return self.lock_expires_at is not None and self.lock_expires_at > now


@dataclass(frozen=True)
class GroupKey:
    """Identifies a delivery group: one source transaction for one patient.

    A None patient_id only matches rows whose patient_id is also None.
    """

    txid: int
    patient_id: int | None


@dataclass(frozen=True)
class DeadLetterEntry:
    """A permanently failed outbox row, as stored in the dead-letter table."""

    outbox_id: int
    txid: int
    table_name: str
    record_id: int
    operation: str
    payload: dict[str, Any] | None
    error_text: str
    attempts: int
    first_failed_at: datetime
    last_failed_at: datetime


@dataclass(frozen=True)
class DeliveryResult:
    """Identity of the downstream resource written by a successful delivery."""

    resource_id: str | None
    resource_version: str | None


class ProcessOutcome(StrEnum):
    """Result of a single claim-and-process cycle."""

    IDLE = "idle"
    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    RACE_LOST = "race_lost"

    @property
    def did_work(self) -> bool:
        """True when a row was claimed during the cycle."""
        return self is not ProcessOutcome.IDLE
