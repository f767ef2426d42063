"""FHIR outbox connector process entry point.

Builds the store handle, the FHIR client and the outbox worker, runs the
worker until SIGINT/SIGTERM and tears everything down in order.
"""

from __future__ import annotations

import asyncio
import signal
import sys

import structlog

from fhir.client import FhirClient
from fhir.mapper import build_patient_resource
from infrastructure.database.engines import build_listen_url
from infrastructure.database.exceptions import DatabaseConnectionError
from infrastructure.database.store import OutboxStore
from infrastructure.logging import configure_logging
from infrastructure.outbox.claims import ClaimCoordinator
from infrastructure.outbox.event_sources import PostgresNotifyEventSource
from infrastructure.outbox.resolver import OutcomeResolver
from infrastructure.outbox.worker import OutboxWorker
from infrastructure.settings import get_settings
from infrastructure.version import __version__
from shared_kernel.outbox.observability import DefaultOutboxWorkerProbe

logger = structlog.get_logger()


def _install_signal_handlers(shutdown: asyncio.Event) -> None:
    """Set the shutdown event on SIGINT and SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown, shutdown, sig)


def _request_shutdown(shutdown: asyncio.Event, sig: signal.Signals) -> None:
    logger.info("shutdown_signal_received", signal=sig.name)
    shutdown.set()


async def run(shutdown: asyncio.Event | None = None) -> int:
    """Run the connector until a shutdown signal arrives.

    Args:
        shutdown: Event that ends the run when set. When omitted, one is
            created and wired to SIGINT/SIGTERM.

    Returns:
        Process exit code: 0 after a clean teardown, 1 if the store is
        unreachable at startup or teardown fails
    """
    settings = get_settings()
    outbox_settings = settings.outbox
    configure_logging(
        level=settings.log_level,
        service=settings.app_name,
        worker_id=outbox_settings.worker_id,
    )
    logger.info("connector_starting", version=__version__)

    store = OutboxStore.from_settings(settings.database)
    try:
        await store.verify_connectivity()
    except DatabaseConnectionError as e:
        logger.error("connector_startup_failed", error=str(e))
        await store.dispose()
        return 1

    probe = DefaultOutboxWorkerProbe()
    client = FhirClient.from_settings(settings.fhir)
    worker = OutboxWorker(
        store=store,
        coordinator=ClaimCoordinator(outbox_settings.worker_id, probe),
        resolver=OutcomeResolver(outbox_settings.worker_id, probe),
        gateway=client,
        mapper=build_patient_resource,
        event_source=PostgresNotifyEventSource(
            build_listen_url(settings.database),
            channel=outbox_settings.channel,
        ),
        probe=probe,
        poll_interval_seconds=outbox_settings.poll_interval_seconds,
        burst_limit=outbox_settings.burst_limit,
        max_retries=outbox_settings.max_retries,
    )

    if shutdown is None:
        shutdown = asyncio.Event()
        _install_signal_handlers(shutdown)

    await worker.start()
    await shutdown.wait()

    try:
        await worker.stop()
        await client.aclose()
        await store.dispose()
    except Exception as e:
        logger.error("connector_shutdown_failed", error=str(e))
        return 1

    logger.info("connector_stopped")
    return 0


def main() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
