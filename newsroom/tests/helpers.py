"""Shared fixtures for the database tests."""

from sqlalchemy.exc import DBAPIError

from newsroom.db import DatabaseConfig

MEMORY_URL = 'sqlite+aiosqlite:///:memory:'


def memory_config(**overrides) -> DatabaseConfig:
    overrides.setdefault('retry_backoff_seconds', 0)
    return DatabaseConfig(url=MEMORY_URL, **overrides)


class FakeDriverError(Exception):
    """Stands in for an asyncpg/psycopg error carrying a SQLSTATE."""

    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


def conflict_error(name: str = 's0') -> DBAPIError:
    """A SQLAlchemy-wrapped duplicate prepared statement error."""
    orig = FakeDriverError(f'prepared statement "{name}" already exists', '42P05')
    return DBAPIError('SELECT 1', None, orig)


class FakeHandle:
    """Records whether the retry executor closed it."""

    def __init__(self, name: str):
        self.name = name
        self.closed = False

    async def close(self) -> None:
        self.closed = True
