"""Process termination hooks for the database connection.

Installing these is an explicit step taken by the host process. Constructing
:class:`~newsroom.db.db_core.Database` never touches signal handling, so tests
and the HTTP server (where uvicorn owns the signals and the lifespan calls
``Database.shutdown()``) are unaffected.
"""

import asyncio
import logging
import signal
from typing import Optional

from .db_core import Database

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)

def install_shutdown_hooks(
    database: Database,
    loop: Optional[asyncio.AbstractEventLoop] = None
) -> asyncio.Event:
    """
    Disconnect ``database`` when the process receives SIGINT or SIGTERM.

    Returns an event that is set once the disconnect has finished; the
    caller's main coroutine waits on it and then returns, which ends the
    process normally.

    Example:
        stopped = install_shutdown_hooks(db)
        await stopped.wait()
    """
    loop = loop or asyncio.get_running_loop()
    stopped = asyncio.Event()
    shutdown_task: Optional[asyncio.Task] = None

    async def _shutdown(signal_name: str) -> None:
        logger.info(f"Received {signal_name}, disconnecting database")
        try:
            await database.shutdown()
        finally:
            stopped.set()

    def _on_signal(sig: signal.Signals) -> None:
        nonlocal shutdown_task
        # Later signals wait on the disconnect already in flight
        if shutdown_task is not None:
            logger.info(f"Received {sig.name}, shutdown already in progress")
            return
        shutdown_task = loop.create_task(_shutdown(sig.name))

    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, _on_signal, sig)

    return stopped

def remove_shutdown_hooks(loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    """Restore default handling of the shutdown signals."""
    loop = loop or asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.remove_signal_handler(sig)
