"""Database package initialization.

This module exposes the public interface of the database package.
"""

from .errors import (
    DatabaseError,
    ConnectionError,
    DisconnectionError,
    TransientConflictError
)
from .db_core import (
    Database,
    DatabaseConfig,
    ConnectionHandle,
    HandleState
)
from .conflicts import is_prepared_statement_conflict
from .operations import (
    with_retry,
    execute_in_transaction,
    execute_with_fresh_client,
    safe_operation
)
from .shutdown import install_shutdown_hooks, remove_shutdown_hooks

def get_database() -> Database:
    """Return the process-wide database manager (FastAPI dependency)."""
    return Database.get_instance()

__all__ = [
    # Core database classes
    'Database',
    'DatabaseConfig',
    'ConnectionHandle',
    'HandleState',
    'get_database',

    # Exceptions
    'DatabaseError',
    'ConnectionError',
    'DisconnectionError',
    'TransientConflictError',

    # Utilities
    'is_prepared_statement_conflict',
    'with_retry',
    'execute_in_transaction',
    'execute_with_fresh_client',
    'safe_operation',
    'install_shutdown_hooks',
    'remove_shutdown_hooks',
]
