"""Outbox pattern implementation for FHIR delivery.

This module provides the value objects, ports and pure helpers shared by
the outbox worker and the FHIR delivery context.
"""

from shared_kernel.outbox.exceptions import DeliveryFailed, OutboxError
from shared_kernel.outbox.merge import merge_payloads
from shared_kernel.outbox.ports import DeliveryGateway, OutboxEventSource
from shared_kernel.outbox.value_objects import (
    DeadLetterEntry,
    DeliveryResult,
    GroupKey,
    OutboxEvent,
    ProcessOutcome,
)

__all__ = [
    "DeadLetterEntry",
    "DeliveryFailed",
    "DeliveryGateway",
    "DeliveryResult",
    "GroupKey",
    "OutboxError",
    "OutboxEvent",
    "OutboxEventSource",
    "ProcessOutcome",
    "merge_payloads",
]
