"""Database error taxonomy."""


class DatabaseError(Exception):
    """Base exception for database-related errors."""
    pass

class ConnectionError(DatabaseError):
    """Raised when a database session cannot be established."""
    pass

class DisconnectionError(DatabaseError):
    """Raised when the database client fails to close cleanly."""
    pass

class TransientConflictError(DatabaseError):
    """A same-name prepared statement collision on a pooled connection."""
    pass
