"""Unit test fixtures with mocked dependencies."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def mock_db_settings():
    """Provide test database settings."""
    from infrastructure.settings import DatabaseSettings

    return DatabaseSettings(
        host="testhost",
        port=5432,
        database="testdb",
        username="testuser",
        password="testpass",
    )


@pytest.fixture
def make_event():
    """Factory for OutboxEvent value objects with sensible defaults."""
    from shared_kernel.outbox.value_objects import OutboxEvent

    def _make(id: int = 1, **overrides):
        fields = {
            "id": id,
            "txid": 100,
            "sequence_in_tx": 1,
            "table_name": "patients",
            "record_id": 42,
            "operation": "U",
            "payload": {},
            "created_at": datetime(2026, 1, 8, 12, 0, 0, tzinfo=UTC),
            "patient_id": 7,
        }
        fields.update(overrides)
        return OutboxEvent(**fields)

    return _make


@pytest.fixture
def mock_session():
    """Provide a mocked AsyncSession.

    add() is synchronous on a real session, and begin_nested() returns an
    async context manager.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.begin_nested = MagicMock(return_value=MagicMock())
    return session


@pytest.fixture
def mock_store(mock_session):
    """Provide a mocked OutboxStore whose session() yields mock_session."""
    store = MagicMock()
    store.session.return_value.__aenter__.return_value = mock_session
    store.session.return_value.__aexit__.return_value = False
    return store


@pytest.fixture
def make_result():
    """Factory for mocked SQLAlchemy results.

    The returned callable takes the objects yielded by result.scalars()
    and the value of result.rowcount.
    """

    def _make(items=(), rowcount=0):
        result = MagicMock()
        items = list(items)
        result.scalars.return_value.all.return_value = items
        result.scalars.return_value.first.return_value = items[0] if items else None
        result.rowcount = rowcount
        return result

    return _make
