"""End-to-end integration tests for outbox delivery against PostgreSQL.

These tests run OutboxWorker.process_claimed() with the real coordinator,
resolver and store. Only the FHIR gateway is replaced, so each outcome is
checked on the rows, dead-letter entries and ledger actually written.

Requirements:
    - PostgreSQL reachable with the CONNECTOR_DB_* settings
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import text

from fhir.mapper import build_patient_resource
from infrastructure.outbox.claims import ClaimCoordinator
from infrastructure.outbox.models import ProcessedEventModel
from infrastructure.outbox.resolver import OutcomeResolver
from infrastructure.outbox.worker import NO_IDENTIFIER_ERROR, OutboxWorker
from shared_kernel.outbox.exceptions import DeliveryFailed
from shared_kernel.outbox.observability import DefaultOutboxWorkerProbe
from shared_kernel.outbox.value_objects import DeliveryResult, ProcessOutcome

pytestmark = pytest.mark.integration

IDENTIFIED = {"identifier_system": "sys", "identifier_value": "123"}


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.deliver_conditional = AsyncMock(return_value=DeliveryResult("abc", "1"))
    gateway.deliver_by_id = AsyncMock(return_value=DeliveryResult("abc", "2"))
    return gateway


@pytest.fixture
def make_worker(store, gateway):
    """Factory for workers sharing the test store and gateway."""

    def _make(worker_id: str = "worker-1") -> OutboxWorker:
        probe = DefaultOutboxWorkerProbe()
        return OutboxWorker(
            store=store,
            coordinator=ClaimCoordinator(worker_id, probe),
            resolver=OutcomeResolver(worker_id, probe),
            gateway=gateway,
            mapper=build_patient_resource,
            event_source=AsyncMock(),
            probe=probe,
        )

    return _make


@pytest.fixture
def ledger_keys(store):
    """Read the idempotency ledger keys."""

    async def _keys() -> list[str]:
        async with store.session() as session:
            result = await session.execute(
                text("SELECT event_key FROM fhir_processed_event ORDER BY id")
            )
            return list(result.scalars().all())

    return _keys


class TestDelivered:
    """Tests for a successful delivery."""

    @pytest.mark.asyncio
    async def test_group_is_merged_delivered_and_recorded_once(
        self,
        make_worker,
        gateway,
        insert_rows,
        fetch_outbox,
        ledger_keys,
        count_rows,
    ):
        """Two fragments of tx 100 / patient 7 become one PUT and one ledger row."""
        await insert_rows(
            {"payload_json": {"name_family": "Doe"}}, {"payload_json": IDENTIFIED}
        )

        outcome = await make_worker().process_claimed()

        assert outcome is ProcessOutcome.DELIVERED
        system, value, resource = gateway.deliver_conditional.call_args[0]
        assert (system, value) == ("sys", "123")
        assert resource["name"][0]["family"] == "Doe"

        rows = await fetch_outbox()
        assert len(rows) == 2
        for row in rows:
            assert row["processed"] is True
            assert row["processed_at"] is not None
            assert row["fhir_resource_id"] == "abc"
            assert row["fhir_version"] == "1"
            assert row["locked_by"] is None
            assert row["lock_expires_at"] is None
        assert await ledger_keys() == ["patients|501|100"]
        assert await count_rows("fhir_dlq") == 0

    @pytest.mark.asyncio
    async def test_processed_group_is_not_delivered_again(
        self, make_worker, gateway, insert_rows
    ):
        """A second cycle finds nothing to claim."""
        await insert_rows({"payload_json": IDENTIFIED})
        worker = make_worker()

        await worker.process_claimed()
        outcome = await worker.process_claimed()

        assert outcome is ProcessOutcome.IDLE
        gateway.deliver_conditional.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_recorded_key_keeps_rows_processed(
        self, store, make_worker, insert_rows, fetch_outbox, ledger_keys
    ):
        """A group whose key is already in the ledger still ends processed."""
        await insert_rows({"payload_json": IDENTIFIED})
        async with store.session() as session:
            session.add(ProcessedEventModel(event_key="patients|501|100"))
            await session.commit()

        outcome = await make_worker().process_claimed()

        assert outcome is ProcessOutcome.DELIVERED
        (row,) = await fetch_outbox()
        assert row["processed"] is True
        assert row["locked_by"] is None
        assert await ledger_keys() == ["patients|501|100"]


class TestRetry:
    """Tests for retryable delivery failures."""

    @pytest.mark.asyncio
    async def test_service_unavailable_schedules_retry(
        self, store, make_worker, gateway, insert_rows, fetch_outbox, count_rows
    ):
        """503 increments attempts, backs off into the future and clears the lease."""
        await insert_rows({"payload_json": IDENTIFIED})
        gateway.deliver_conditional.side_effect = DeliveryFailed(
            "Service Unavailable", 503
        )

        outcome = await make_worker().process_claimed()

        assert outcome is ProcessOutcome.RETRY_SCHEDULED
        (row,) = await fetch_outbox()
        assert row["processed"] is False
        assert row["attempts"] == 1
        assert row["last_error"] == "Service Unavailable"
        assert row["locked_by"] is None
        assert row["lock_expires_at"] is None
        assert await count_rows("fhir_dlq") == 0

        async with store.session() as session:
            result = await session.execute(
                text("SELECT next_retry_at - now() FROM fhir_outbox WHERE id = :id"),
                {"id": row["id"]},
            )
            backoff = result.scalar_one()
        assert timedelta(seconds=50) < backoff <= timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_backoff_scales_with_stored_attempts(
        self, store, make_worker, gateway, insert_rows
    ):
        """The delay is one minute times the attempts stored before the failure."""
        (row_id,) = await insert_rows({"payload_json": IDENTIFIED, "attempts": 3})
        gateway.deliver_conditional.side_effect = DeliveryFailed("timeout")

        await make_worker().process_claimed()

        async with store.session() as session:
            result = await session.execute(
                text(
                    "SELECT attempts, next_retry_at - now() AS backoff "
                    "FROM fhir_outbox WHERE id = :id"
                ),
                {"id": row_id},
            )
            row = result.mappings().one()
        assert row["attempts"] == 4
        backoff = row["backoff"]
        assert timedelta(minutes=2, seconds=50) < backoff <= timedelta(minutes=3)

    @pytest.mark.asyncio
    async def test_row_is_claimable_once_backoff_elapses(
        self, store, make_worker, gateway, insert_rows
    ):
        """A backed-off row is skipped until its retry time passes."""
        (row_id,) = await insert_rows({"payload_json": IDENTIFIED})
        gateway.deliver_conditional.side_effect = DeliveryFailed("Bad Gateway", 502)
        worker = make_worker()

        await worker.process_claimed()
        assert await worker.process_claimed() is ProcessOutcome.IDLE

        async with store.session() as session:
            await session.execute(
                text(
                    "UPDATE fhir_outbox "
                    "SET next_retry_at = now() - interval '1 second' "
                    "WHERE id = :id"
                ),
                {"id": row_id},
            )
            await session.commit()
        gateway.deliver_conditional.side_effect = None

        assert await worker.process_claimed() is ProcessOutcome.DELIVERED


class TestDeadLetter:
    """Tests for terminal delivery failures."""

    @pytest.mark.asyncio
    async def test_unprocessable_moves_group_to_dlq(
        self, store, make_worker, gateway, insert_rows, fetch_outbox
    ):
        """422 writes one dead-letter entry per row and removes the rows."""
        first, second = await insert_rows(
            {"payload_json": {"name_family": "Doe"}},
            {"payload_json": IDENTIFIED, "attempts": 2},
        )
        gateway.deliver_conditional.side_effect = DeliveryFailed(
            "Unprocessable Entity", 422
        )

        outcome = await make_worker().process_claimed()

        assert outcome is ProcessOutcome.DEAD_LETTERED
        assert await fetch_outbox() == []
        async with store.session() as session:
            result = await session.execute(
                text(
                    "SELECT outbox_id, txid, error_text, attempts, payload_json "
                    "FROM fhir_dlq ORDER BY outbox_id"
                )
            )
            entries = [dict(row) for row in result.mappings().all()]
        assert [entry["outbox_id"] for entry in entries] == [first, second]
        assert {entry["error_text"] for entry in entries} == {"Unprocessable Entity"}
        assert [entry["attempts"] for entry in entries] == [0, 2]
        assert entries[0]["payload_json"] == {"name_family": "Doe"}

    @pytest.mark.asyncio
    async def test_missing_identifier_is_dead_lettered_without_delivery(
        self, store, make_worker, gateway, insert_rows, fetch_outbox, ledger_keys
    ):
        """No identifier and no prior resource id means no PUT at all."""
        await insert_rows({"payload_json": {"name_family": "Doe"}})

        outcome = await make_worker().process_claimed()

        assert outcome is ProcessOutcome.DEAD_LETTERED
        gateway.deliver_conditional.assert_not_awaited()
        gateway.deliver_by_id.assert_not_awaited()
        assert await fetch_outbox() == []
        assert await ledger_keys() == []
        async with store.session() as session:
            result = await session.execute(text("SELECT error_text FROM fhir_dlq"))
            assert result.scalars().all() == [NO_IDENTIFIER_ERROR]


class TestLeaseGuard:
    """Tests for outcomes written after the lease changed hands."""

    @pytest.mark.asyncio
    async def test_late_completion_writes_nothing(
        self, store, insert_rows, fetch_outbox, ledger_keys
    ):
        """A worker whose lease was taken over cannot mark the group processed."""
        probe = DefaultOutboxWorkerProbe()
        await insert_rows({"payload_json": IDENTIFIED})

        async with store.session() as session:
            seed = await ClaimCoordinator("worker-a", probe).claim_one(session)
            await session.commit()
        async with store.session() as session:
            await session.execute(
                text(
                    "UPDATE fhir_outbox "
                    "SET lock_expires_at = now() - interval '1 second'"
                )
            )
            await session.commit()
        async with store.session() as session:
            await ClaimCoordinator("worker-b", probe).claim_one(session)
            await session.commit()

        async with store.session() as session:
            completed = await OutcomeResolver("worker-a", probe).complete(
                session, [seed], DeliveryResult("abc", "1"), seed.event_key
            )
            await session.commit()

        assert completed is False
        (row,) = await fetch_outbox()
        assert row["processed"] is False
        assert row["locked_by"] == "worker-b"
        assert await ledger_keys() == []
