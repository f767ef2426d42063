"""Protocols (ports) for the outbox pattern.

These protocols define the collaborators the outbox worker depends on
without binding it to a specific downstream service or notification
mechanism. The FHIR context provides the concrete gateway and mapper.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from shared_kernel.outbox.value_objects import DeliveryResult


@runtime_checkable
class DeliveryGateway(Protocol):
    """Writes a mapped resource to the downstream service.

    Both operations are idempotent under repeated identical calls: the
    conditional write replaces whatever resource the identifier matches,
    and the direct write replaces the resource with the given id.
    """

    async def deliver_conditional(
        self,
        identifier_system: str,
        identifier_value: str,
        resource: dict[str, Any],
    ) -> "DeliveryResult":
        """Create or replace the resource uniquely matched by an identifier.

        Args:
            identifier_system: The identifier namespace (e.g., an OID URN)
            identifier_value: The identifier value within that namespace
            resource: The resource body to write

        Returns:
            The downstream resource id and version

        Raises:
            DeliveryFailed: If the write did not succeed
        """
        ...

    async def deliver_by_id(
        self,
        resource_id: str,
        resource: dict[str, Any],
    ) -> "DeliveryResult":
        """Replace the resource with a known downstream id.

        Args:
            resource_id: The downstream resource id recorded by a prior delivery
            resource: The resource body to write

        Returns:
            The downstream resource id and version

        Raises:
            DeliveryFailed: If the write did not succeed
        """
        ...


# Maps a merged payload to a downstream resource body.
ResourceMapper = Callable[[dict[str, Any]], dict[str, Any]]


@runtime_checkable
class OutboxEventSource(Protocol):
    """Event source for outbox wake-ups.

    Implementations provide different mechanisms for being notified of new
    outbox rows (PostgreSQL NOTIFY, message queue, etc.). The notification
    payload is advisory: the worker treats any signal as "check for new
    work" and never reads the work from the signal itself.
    """

    async def start(self, on_event: Callable[[str | None], Awaitable[None]]) -> None:
        """Start the event source and begin monitoring for events.

        This method should not return until stop() is called or an error occurs.

        Args:
            on_event: Async callback invoked for each signal with its raw payload
        """
        ...

    async def stop(self) -> None:
        """Stop the event source and release its connection."""
        ...
