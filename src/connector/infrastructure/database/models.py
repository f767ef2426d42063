"""Declarative base for the connector's table mappings."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for the outbox, dead-letter and ledger mappings.

    The tables are owned by the upstream schema (triggers create the rows);
    these models only describe them, so metadata.create_all() is never
    called by the connector.
    """

    type_annotation_map: dict[Any, Any] = {
        dict[str, Any]: JSONB,
    }
