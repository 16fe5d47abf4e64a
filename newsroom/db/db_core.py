"""Core database functionality and configuration.

This module owns the database client lifecycle for the whole process: one
primary connection handle shared by every caller, explicit connect/disconnect/
health-check operations, and a retry executor that recovers from prepared
statement collisions by re-running an operation on a fresh, short-lived client.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from contextvars import ContextVar
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .conflicts import is_prepared_statement_conflict
from .errors import ConnectionError, DatabaseError, DisconnectionError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Fresh handle bound by execute_with_retry for the duration of one attempt.
# Being a ContextVar, the binding is only visible to the task running that attempt.
_active_handle: ContextVar[Optional['ConnectionHandle']] = ContextVar(
    'newsroom_active_handle', default=None
)


def _normalize_url(url: str) -> str:
    """Point bare PostgreSQL URLs at the asyncpg driver."""
    for prefix in ('postgres://', 'postgresql://'):
        if url.startswith(prefix):
            return 'postgresql+asyncpg://' + url[len(prefix):]
    return url


class DatabaseConfig:
    """Database configuration settings."""

    def __init__(
        self,
        url: Optional[str] = None,
        echo: Optional[bool] = None,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
        pool_timeout: Optional[int] = None,
        pool_recycle: Optional[int] = None,
        pool_pre_ping: bool = True,
        retry_backoff_seconds: Optional[float] = None
    ):
        """
        Initialize database configuration.

        Every setting left as None is read from the environment. A missing
        DATABASE_URL is not an error here; it surfaces as a ConnectionError
        the first time a connection is attempted.

        Args:
            url: SQLAlchemy async connection URL. Defaults to DATABASE_URL.
                 postgres:// and postgresql:// URLs are rewritten to use asyncpg.
            echo: Whether to echo SQL statements (DB_ECHO)
            pool_size: Size of the connection pool (DB_POOL_SIZE)
            max_overflow: Extra connections allowed temporarily (DB_MAX_OVERFLOW)
            pool_timeout: Seconds to wait for an available connection (DB_POOL_TIMEOUT)
            pool_recycle: Seconds before connections are recycled (DB_POOL_RECYCLE)
            pool_pre_ping: Whether to ping connections before using them
            retry_backoff_seconds: Base delay between conflict retries, multiplied
                                   by the attempt number (DB_RETRY_BACKOFF_SECONDS)
        """
        raw_url = url if url is not None else os.environ.get('DATABASE_URL', '')
        self.url = _normalize_url(raw_url.strip()) if raw_url else None

        self.echo = echo if echo is not None else os.environ.get('DB_ECHO', 'false').lower() == 'true'
        self.pool_size = pool_size if pool_size is not None else int(os.environ.get('DB_POOL_SIZE', '3'))
        self.max_overflow = max_overflow if max_overflow is not None else int(os.environ.get('DB_MAX_OVERFLOW', '4'))
        self.pool_timeout = pool_timeout if pool_timeout is not None else int(os.environ.get('DB_POOL_TIMEOUT', '30'))
        self.pool_recycle = pool_recycle if pool_recycle is not None else int(os.environ.get('DB_POOL_RECYCLE', '1800'))
        self.pool_pre_ping = pool_pre_ping
        self.retry_backoff_seconds = (
            retry_backoff_seconds if retry_backoff_seconds is not None
            else float(os.environ.get('DB_RETRY_BACKOFF_SECONDS', '1.0'))
        )

    @property
    def is_sqlite(self) -> bool:
        return bool(self.url) and self.url.startswith('sqlite')

    @property
    def connection_url(self) -> str:
        """Get the database connection URL."""
        if not self.url:
            raise ConnectionError("DATABASE_URL is not configured")
        return self.url

    def get_engine_args(self) -> Dict[str, Any]:
        """Get SQLAlchemy engine arguments based on configuration."""
        args: Dict[str, Any] = {"echo": self.echo}

        if self.is_sqlite:
            # In-memory SQLite only lives as long as its single connection
            if ':memory:' in self.url or self.url.rstrip('/').endswith(':'):
                args["poolclass"] = StaticPool
        else:
            args.update({
                "pool_size": self.pool_size,
                "max_overflow": self.max_overflow,
                "pool_timeout": self.pool_timeout,
                "pool_recycle": self.pool_recycle,
                "pool_pre_ping": self.pool_pre_ping
            })

        return args


class HandleState(Enum):
    UNCONNECTED = 'unconnected'
    CONNECTED = 'connected'
    DISCONNECTING = 'disconnecting'


class ConnectionHandle:
    """One database client: an async engine, its session factory and its open state."""

    def __init__(self, engine: AsyncEngine, name: str = 'primary'):
        self.engine = engine
        self.name = name
        self.session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self.state = HandleState.UNCONNECTED

    @classmethod
    def from_config(cls, config: DatabaseConfig, name: str = 'primary') -> 'ConnectionHandle':
        """Build an unopened handle. A malformed URL or missing driver raises ConnectionError."""
        try:
            engine = create_async_engine(config.connection_url, **config.get_engine_args())
        except ConnectionError:
            raise
        except Exception as e:
            raise ConnectionError(f"Failed to create database engine: {e}") from e
        return cls(engine, name)

    @property
    def is_open(self) -> bool:
        return self.state is HandleState.CONNECTED

    async def open(self) -> None:
        """Establish a session against the server."""
        if self.is_open:
            return
        try:
            async with self.engine.connect():
                pass
        except Exception as e:
            raise ConnectionError(f"Failed to connect to database: {e}") from e
        self.state = HandleState.CONNECTED

    async def close(self) -> None:
        """Dispose of the engine's pool. The handle ends up unconnected either way."""
        self.state = HandleState.DISCONNECTING
        try:
            await self.engine.dispose()
        except Exception as e:
            raise DisconnectionError(f"Failed to close database client: {e}") from e
        finally:
            self.state = HandleState.UNCONNECTED

    def __repr__(self) -> str:
        return f"<ConnectionHandle {self.name} {self.state.value}>"


class Database:
    """Core database management class implementing the singleton pattern.

    The class attribute ``_instance`` is the process-wide registry. It is
    filled by the first ``Database()`` / ``Database.get_instance()`` call and
    only cleared by ``reset_instance()``. Construction is synchronous and
    never awaits, so tasks interleaving on one event loop cannot build two
    managers. Construction does not open a connection or install signal
    handlers; see ``newsroom.db.shutdown`` for the latter.
    """

    _instance: Optional['Database'] = None

    def __new__(cls, config: Optional[DatabaseConfig] = None):
        """Ensure only one instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """Initialize the database manager if not already initialized."""
        if self._initialized:
            return

        self.config = config or DatabaseConfig()
        self._primary: Optional[ConnectionHandle] = None
        self._initialized = True

    @classmethod
    def get_instance(cls, config: Optional[DatabaseConfig] = None) -> 'Database':
        """Return the process-wide manager, constructing it on first call.

        ``config`` only takes effect on the call that constructs the manager.
        """
        return cls(config)

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the registered manager. Callers must disconnect it first."""
        cls._instance = None

    @property
    def is_connected(self) -> bool:
        return self._primary is not None and self._primary.is_open

    async def connect(self) -> None:
        """Open the primary connection. A no-op when already connected.

        Raises:
            ConnectionError: If the URL is missing or malformed, or the server
                             cannot be reached or rejects the credentials
        """
        if self.is_connected:
            return
        try:
            if self._primary is None:
                self._primary = ConnectionHandle.from_config(self.config)
            await self._primary.open()
        except ConnectionError as e:
            logger.error(f"Database connection failed: {e}")
            raise
        logger.info("Database connected successfully")

    async def disconnect(self) -> None:
        """Close the primary connection. Calling it when already closed does nothing.

        Raises:
            DisconnectionError: If closing the underlying client fails
        """
        handle = self._primary
        if handle is None:
            return
        self._primary = None
        was_open = handle.is_open
        try:
            await handle.close()
        except DisconnectionError as e:
            logger.error(f"Database disconnection failed: {e}")
            raise
        if was_open:
            logger.info("Database disconnected successfully")

    async def shutdown(self) -> None:
        """Best-effort disconnect for process termination; never raises DisconnectionError."""
        try:
            await self.disconnect()
        except DisconnectionError as e:
            logger.error(f"Ignoring disconnect failure during shutdown: {e}")

    async def health_check(self) -> bool:
        """Run SELECT 1 on the primary connection. Any failure is reported as False."""
        handle = self._primary
        if handle is None or not handle.is_open:
            logger.warning("Database health check failed: not connected")
            return False
        try:
            async with handle.engine.connect() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def reset_connection(self) -> None:
        """Disconnect, then connect again. Leaves the manager closed if the connect fails."""
        logger.info("Resetting database connection...")
        try:
            await self.disconnect()
            await self.connect()
        except DatabaseError as e:
            logger.error(f"Failed to reset database connection: {e}")
            raise
        logger.info("Database connection reset successfully")

    def create_fresh_client(self) -> ConnectionHandle:
        """Build a new, independent and unopened handle. The primary handle is left alone."""
        return ConnectionHandle.from_config(self.config, name='fresh')

    def current_handle(self) -> Optional[ConnectionHandle]:
        """The handle ``session()`` uses in this task: a bound fresh handle, else the primary."""
        return _active_handle.get() or self._primary

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provide a transactional scope around a series of operations.

        The session is bound to the fresh handle of the retry attempt in
        progress, if any, otherwise to the primary connection (which is
        connected on first use). Commits on success; on failure rolls back
        and re-raises the original error unchanged.

        Example:
            async with db.session() as session:
                result = await session.execute(select(Article).limit(10))
        """
        handle = _active_handle.get()
        if handle is None:
            await self.connect()
            handle = self._primary

        async with handle.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int = 3
    ) -> T:
        """
        Run ``operation`` and recover from prepared statement conflicts.

        The first attempt runs on the primary connection. After a conflict,
        each further attempt runs on its own fresh client, which is closed as
        soon as that attempt finishes. Between failed fresh-client attempts
        the executor waits ``retry_backoff_seconds * n``, n being the number
        of the fresh-client retry that failed. Any other error, or a conflict
        on the last attempt, is re-raised unchanged.

        Args:
            operation: Zero-argument callable returning an awaitable; it must
                       reach the database through ``session()``
            max_retries: Total number of attempts, at least 1

        Example:
            articles = await db.execute_with_retry(lambda: list_published(limit=10))
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        last_error: Optional[BaseException] = None
        for attempt in range(1, max_retries + 1):
            fresh = self.create_fresh_client() if attempt > 1 else None
            try:
                return await self._run_attempt(operation, fresh)
            except Exception as e:
                last_error = e
                if not is_prepared_statement_conflict(e) or attempt == max_retries:
                    raise
                logger.warning(
                    f"Attempt {attempt}/{max_retries}: prepared statement conflict detected, "
                    "retrying with a fresh client"
                )
                if fresh is not None:
                    # attempt - 1 numbers the fresh-client retries 1, 2, ...
                    await asyncio.sleep(self.config.retry_backoff_seconds * (attempt - 1))

        # This should never happen due to the raise in the loop
        raise last_error or DatabaseError("Unknown error in retry logic")

    async def _run_attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        fresh: Optional[ConnectionHandle]
    ) -> T:
        if fresh is None:
            return await operation()

        token = _active_handle.set(fresh)
        try:
            return await operation()
        finally:
            _active_handle.reset(token)
            await self.release_fresh_client(fresh)

    async def release_fresh_client(self, handle: ConnectionHandle) -> None:
        """Close a fresh handle without letting a close failure mask the attempt's outcome."""
        try:
            await handle.close()
        except DisconnectionError as e:
            logger.warning(f"Failed to close fresh database client: {e}")
