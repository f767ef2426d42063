"""Database-specific exceptions for the connector."""


class DatabaseError(Exception):
    """Base exception for database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the outbox store cannot be reached."""

    pass
