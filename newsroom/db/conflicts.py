"""Classification of transient prepared-statement conflicts.

Pooled PostgreSQL connections (pgbouncer in transaction mode, serverless
proxies) can hand a session back with a previous caller's named prepared
statement still registered server-side. The next statement prepared under
the same name fails with SQLSTATE 42P05 (``duplicate_prepared_statement``).
Retrying on the same session does not help; a different session does.
"""

from typing import Iterator, Optional

from .errors import TransientConflictError

# PostgreSQL SQLSTATE for duplicate_prepared_statement
DUPLICATE_PREPARED_STATEMENT = '42P05'

_MESSAGE_MARKERS = ('prepared statement', 'already exists')


def _error_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield the error, the driver error it wraps, and its explicit causes, each once."""
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        # SQLAlchemy's DBAPIError keeps the driver exception on .orig
        orig = getattr(current, 'orig', None)
        if isinstance(orig, BaseException):
            pending.append(orig)
        pending.append(current.__cause__)


def _sqlstate(exc: BaseException) -> Optional[str]:
    # asyncpg exposes .sqlstate, psycopg2/psycopg expose .pgcode
    for attr in ('sqlstate', 'pgcode'):
        code = getattr(exc, attr, None)
        if isinstance(code, str) and code:
            return code
    return None


def _message_matches(exc: BaseException) -> bool:
    message = str(exc).lower()
    return all(marker in message for marker in _MESSAGE_MARKERS)


def is_prepared_statement_conflict(exc: BaseException) -> bool:
    """Return True when ``exc`` is a same-name prepared statement collision.

    The structured SQLSTATE is checked first anywhere in the error chain. The
    message text is only consulted as a fallback, when no error in the chain
    carries a code at all.
    """
    chain = list(_error_chain(exc))
    has_code = False
    for error in chain:
        if isinstance(error, TransientConflictError):
            return True
        code = _sqlstate(error)
        if code == DUPLICATE_PREPARED_STATEMENT:
            return True
        has_code = has_code or code is not None
    if has_code:
        return False
    return any(_message_matches(error) for error in chain)


__all__ = ['DUPLICATE_PREPARED_STATEMENT', 'is_prepared_statement_conflict']
