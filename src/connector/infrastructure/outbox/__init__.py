"""Infrastructure layer for the FHIR outbox.

Contains the SQLAlchemy models, the claim coordinator, the outcome
resolver and the worker that schedules delivery cycles.
"""

from infrastructure.outbox.claims import ClaimCoordinator
from infrastructure.outbox.models import (
    DeadLetterModel,
    OutboxModel,
    ProcessedEventModel,
)
from infrastructure.outbox.resolver import OutcomeResolver
from infrastructure.outbox.worker import OutboxWorker

__all__ = [
    "ClaimCoordinator",
    "DeadLetterModel",
    "OutboxModel",
    "OutboxWorker",
    "OutcomeResolver",
    "ProcessedEventModel",
]
