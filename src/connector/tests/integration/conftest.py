"""Integration test fixtures for outbox store tests.

These fixtures require a running PostgreSQL instance. The outbox tables are
created from the ORM metadata and emptied around each test; tests are
skipped when the database cannot be reached.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from pydantic import SecretStr
from sqlalchemy import text

from infrastructure.database.exceptions import DatabaseConnectionError
from infrastructure.database.models import Base
from infrastructure.database.store import OutboxStore
from infrastructure.outbox.models import OutboxModel
from infrastructure.settings import DatabaseSettings

# Rows are ordered by created_at; tests offset from a fixed origin
CREATED_ORIGIN = datetime(2026, 1, 8, 12, 0, 0, tzinfo=UTC)

OUTBOX_TABLES = "fhir_outbox, fhir_dlq, fhir_processed_event"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires database)",
    )


@pytest.fixture(scope="session")
def integration_db_settings() -> DatabaseSettings:
    """Database settings for integration tests.

    Override with environment variables:
        CONNECTOR_DB_HOST, CONNECTOR_DB_PORT, etc.
    """
    return DatabaseSettings(
        host=os.getenv("CONNECTOR_DB_HOST", "localhost"),
        port=int(os.getenv("CONNECTOR_DB_PORT", "5432")),
        database=os.getenv("CONNECTOR_DB_DATABASE", "health_tables"),
        username=os.getenv("CONNECTOR_DB_USERNAME", "postgres"),
        password=SecretStr(os.getenv("CONNECTOR_DB_PASSWORD", "postgres")),
    )


@pytest_asyncio.fixture
async def store(
    integration_db_settings: DatabaseSettings,
) -> AsyncGenerator[OutboxStore, None]:
    """Provide a connected store with empty outbox tables.

    Creates the tables if they are missing and truncates them before and
    after each test.
    """
    store = OutboxStore.from_settings(integration_db_settings)
    try:
        await store.verify_connectivity()
    except DatabaseConnectionError as e:
        await store.dispose()
        pytest.skip(f"PostgreSQL not reachable: {e}")

    async with store.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(f"TRUNCATE {OUTBOX_TABLES} RESTART IDENTITY"))

    yield store

    async with store.engine.begin() as conn:
        await conn.execute(text(f"TRUNCATE {OUTBOX_TABLES} RESTART IDENTITY"))
    await store.dispose()


@pytest.fixture
def insert_rows(store: OutboxStore):
    """Factory inserting outbox rows and returning their ids.

    Each row is a dict of OutboxModel fields; unspecified fields default to
    an unleased patients update of tx 100 / patient 7. The n-th row is
    created n seconds after CREATED_ORIGIN unless created_at is given.
    """

    async def _insert(*rows: dict[str, Any]) -> list[int]:
        models = []
        for offset, fields in enumerate(rows):
            values = {
                "txid": 100,
                "sequence_in_tx": offset + 1,
                "table_name": "patients",
                "record_id": 501,
                "operation": "U",
                "payload_json": {},
                "patient_id": 7,
                "created_at": CREATED_ORIGIN + timedelta(seconds=offset),
            }
            values.update(fields)
            models.append(OutboxModel(**values))

        async with store.session() as session:
            session.add_all(models)
            await session.commit()
        return [model.id for model in models]

    return _insert


@pytest.fixture
def fetch_outbox(store: OutboxStore):
    """Read outbox rows as plain mappings, ordered by id."""

    async def _fetch() -> list[dict[str, Any]]:
        async with store.session() as session:
            result = await session.execute(
                text("SELECT * FROM fhir_outbox ORDER BY id")
            )
            return [dict(row) for row in result.mappings().all()]

    return _fetch


@pytest.fixture
def count_rows(store: OutboxStore):
    """Count the rows of one of the outbox tables."""

    async def _count(table: str) -> int:
        async with store.session() as session:
            result = await session.execute(text(f"SELECT count(*) FROM {table}"))
            return result.scalar_one()

    return _count
