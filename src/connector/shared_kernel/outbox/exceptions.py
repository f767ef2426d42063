"""Exceptions raised by outbox delivery collaborators."""


class OutboxError(Exception):
    """Base exception for outbox processing."""

    pass


class DeliveryFailed(OutboxError):
    """Raised when the downstream service rejects or cannot receive a resource.

    Attributes:
        status: HTTP status code, or None when no response was received
            (timeouts, connection errors)
        detail: Error text recorded on the outbox row or dead-letter entry
    """

    def __init__(self, detail: str, status: int | None = None):
        super().__init__(detail)
        self.status = status
        self.detail = detail
