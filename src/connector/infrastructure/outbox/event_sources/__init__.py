"""Event sources for the FHIR outbox.

Event sources wake the worker when new outbox rows are written. They carry
no work themselves; the worker always claims rows from the table.
"""

from infrastructure.outbox.event_sources.postgres_notify import (
    PostgresNotifyEventSource,
)

__all__ = ["PostgresNotifyEventSource"]
