"""PostgreSQL NOTIFY-based event source for the FHIR outbox.

The outbox triggers issue a NOTIFY on every insert. This source keeps a
dedicated LISTEN connection open through asyncpg-listen, which handles
reconnection, and forwards each notification to the worker as a wake-up.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from asyncpg_listen import (
    ListenPolicy,
    NotificationListener,
    NotificationOrTimeout,
    Timeout,
    connect_func,
)

from shared_kernel.outbox.observability import (
    DefaultEventSourceProbe,
    EventSourceProbe,
)
from shared_kernel.outbox.ports import OutboxEventSource


class PostgresNotifyEventSource(OutboxEventSource):
    """LISTEN/NOTIFY event source for outbox wake-ups.

    The notification payload is passed through untouched. The worker uses
    it for logging only, so malformed payloads are not an error here.
    """

    def __init__(
        self,
        db_url: str,
        channel: str = "fhir_outbox_event",
        probe: EventSourceProbe | None = None,
    ) -> None:
        """Initialize the NOTIFY event source.

        Args:
            db_url: Plain PostgreSQL URL (no SQLAlchemy driver suffix)
            channel: NOTIFY channel name (default: "fhir_outbox_event")
            probe: Optional observability probe (default: DefaultEventSourceProbe)
        """
        self._db_url = db_url
        self._channel = channel
        self._probe = probe or DefaultEventSourceProbe()
        self._on_event: Callable[[str | None], Awaitable[None]] | None = None
        self._running = False
        self._listener: NotificationListener | None = None
        self._listener_task: asyncio.Task[None] | None = None

    @property
    def channel(self) -> str:
        """The channel this source listens on."""
        return self._channel

    async def start(self, on_event: Callable[[str | None], Awaitable[None]]) -> None:
        """Listen for notifications until stop() is called.

        A failure of the listen loop is reported to the probe and ends this
        call; the worker's poll loop keeps draining the outbox without it.

        Args:
            on_event: Async callback invoked with each notification payload
        """
        self._on_event = on_event
        self._running = True

        try:
            self._listener = NotificationListener(connect_func(self._db_url))
            self._probe.event_source_started(self._channel)

            self._listener_task = asyncio.create_task(
                self._listener.run(
                    {self._channel: self._handle_notification},
                    policy=ListenPolicy.ALL,
                )
            )
            await self._listener_task
        except asyncio.CancelledError:
            # stop() cancels the listener task
            pass
        except Exception as e:
            self._probe.listener_error(str(e))

    async def _handle_notification(self, notification: NotificationOrTimeout) -> None:
        if not self._running:
            return

        # asyncpg-listen emits Timeout when no notification arrived in time
        if isinstance(notification, Timeout):
            return

        self._probe.notification_received(notification.payload)
        if self._on_event is not None:
            await self._on_event(notification.payload)

    async def stop(self) -> None:
        """Stop listening and close the LISTEN connection."""
        self._running = False

        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass

        self._probe.event_source_stopped()
