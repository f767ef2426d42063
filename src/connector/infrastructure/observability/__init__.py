"""Probes for the connector's own infrastructure.

Outbox processing and FHIR calls have their own probes next to the code
they instrument; this package covers the database handle.
"""

from infrastructure.observability.probes import (
    ConnectionProbe,
    DefaultConnectionProbe,
)

__all__ = [
    "ConnectionProbe",
    "DefaultConnectionProbe",
]
