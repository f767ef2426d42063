"""Payload merging for grouped outbox rows.

A single source transaction may emit several change rows for one patient
(e.g., a demographics update plus an identifier insert). They are combined
into one logical record before delivery.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from shared_kernel.outbox.value_objects import OutboxEvent


def merge_payloads(rows: Iterable[OutboxEvent]) -> dict[str, Any]:
    """Shallow-merge the payload fragments of a group into one record.

    Rows are applied in ascending id order, so on a key collision the
    fragment of the later row wins. Rows without a payload, or whose
    payload is not a JSON object (an array or a scalar), are skipped.
    Field values are not validated; interpreting the merged shape is the
    resource mapper's job.

    Args:
        rows: The claimed rows of one group, in any order

    Returns:
        The merged record
    """
    merged: dict[str, Any] = {}
    for row in sorted(rows, key=lambda r: r.id):
        if not row.payload or not isinstance(row.payload, Mapping):
            continue
        merged.update(row.payload)
    return merged
