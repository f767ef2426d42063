"""Database infrastructure - shared connection primitives."""

from infrastructure.database.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
)
from infrastructure.database.store import OutboxStore

__all__ = [
    "DatabaseConnectionError",
    "DatabaseError",
    "OutboxStore",
]
