"""Database operations and utilities.

This module provides helpers built on the retry executor of
:class:`~newsroom.db.db_core.Database`: a decorator form, transactional
execution, and fallbacks for operations that keep colliding with stale
prepared statements.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from .conflicts import is_prepared_statement_conflict
from .db_core import Database
from .errors import DatabaseError

logger = logging.getLogger(__name__)

# Type variable for generic return type
T = TypeVar('T')

def with_retry(max_retries: int = 3) -> Callable:
    """
    Decorator that runs a coroutine function through ``Database.execute_with_retry``.

    Args:
        max_retries: Total number of attempts

    Example:
        @with_retry(max_retries=3)
        async def count_articles() -> int:
            async with Database.get_instance().session() as session:
                return await session.scalar(select(func.count()).select_from(Article))
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await Database.get_instance().execute_with_retry(
                lambda: func(*args, **kwargs),
                max_retries=max_retries
            )

        return wrapper
    return decorator

async def execute_in_transaction(
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any
) -> T:
    """
    Execute a database operation within a transaction with retry logic.

    Args:
        operation: Coroutine function taking the session as its first argument
        *args: Positional arguments to pass to the operation
        **kwargs: Keyword arguments to pass to the operation

    Returns:
        The result of the operation

    Example:
        async def publish(session, article_id: str):
            await session.execute(
                update(Article).where(Article.id == article_id).values(status='PUBLISHED')
            )

        await execute_in_transaction(publish, article_id='abc')
    """
    db = Database.get_instance()

    async def run() -> T:
        async with db.session() as session:
            return await operation(session, *args, **kwargs)

    return await db.execute_with_retry(run)

async def execute_with_fresh_client(
    operation: Callable[[AsyncSession], Awaitable[T]],
    max_retries: int = 2,
    delay: float = 0.5
) -> T:
    """
    Run ``operation`` on a brand-new client for every attempt.

    Used when the primary connection cannot be trusted at all. Each attempt
    gets its own fresh handle, which is closed when the attempt ends. Only
    prepared statement conflicts are retried, waiting ``delay * attempt``
    seconds in between.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    db = Database.get_instance()
    last_error: Optional[BaseException] = None

    for attempt in range(1, max_retries + 1):
        client = db.create_fresh_client()
        try:
            async with client.session_factory() as session:
                result = await operation(session)
                await session.commit()
            return result
        except Exception as e:
            last_error = e
            if not is_prepared_statement_conflict(e) or attempt == max_retries:
                raise
            logger.warning(
                f"Attempt {attempt}/{max_retries}: prepared statement conflict, "
                "retrying with fresh client..."
            )
            await asyncio.sleep(delay * attempt)
        finally:
            await db.release_fresh_client(client)

    raise last_error or DatabaseError("Unknown error in retry logic")

async def safe_operation(
    primary: Callable[[], Awaitable[T]],
    fallback: Optional[Callable[[AsyncSession], Awaitable[T]]] = None,
    raw_sql_fallback: Optional[Callable[[], Awaitable[T]]] = None
) -> T:
    """
    Run ``primary`` and fall back when it hits a prepared statement conflict.

    The raw SQL fallback is tried first, then ``fallback`` on fresh clients.
    A failing fallback is logged and the next one is tried. When nothing
    succeeds the original conflict is re-raised. Errors that are not
    conflicts propagate straight away.
    """
    try:
        return await primary()
    except Exception as e:
        if not is_prepared_statement_conflict(e):
            raise
        logger.warning("Prepared statement conflict detected, trying fallbacks")

        if raw_sql_fallback is not None:
            try:
                return await raw_sql_fallback()
            except Exception as raw_error:
                logger.error(f"Raw SQL fallback failed: {raw_error}")

        if fallback is not None:
            try:
                return await execute_with_fresh_client(fallback)
            except Exception as fresh_error:
                logger.error(f"Fresh client fallback failed: {fresh_error}")

        raise
