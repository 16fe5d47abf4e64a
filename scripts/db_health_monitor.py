#!/usr/bin/env python3
"""Poll database health until interrupted.

Connects once, then runs the health check every ``--interval`` seconds.
SIGINT/SIGTERM disconnect the database and stop the loop.

Usage:
    python scripts/db_health_monitor.py --interval 30
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to Python path
sys.path.append(str(Path(__file__).parent.parent))

from newsroom.config.environment import IS_PRODUCTION_ENVIRONMENT  # noqa: F401
from newsroom.db import Database, DatabaseError, install_shutdown_hooks
from newsroom.utils.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

async def monitor(interval: float) -> int:
    db = Database.get_instance()
    stopped = install_shutdown_hooks(db)

    try:
        await db.connect()
    except DatabaseError as e:
        logger.error(f"Could not connect, monitoring anyway: {e}")

    failures = 0
    while not stopped.is_set():
        if await db.health_check():
            if failures:
                logger.info(f"Database healthy again after {failures} failed checks")
            failures = 0
        else:
            failures += 1
            logger.warning(f"Database unhealthy ({failures} consecutive failures)")
            if not db.is_connected:
                try:
                    await db.reset_connection()
                except DatabaseError as e:
                    logger.error(f"Reconnect failed: {e}")

        try:
            await asyncio.wait_for(stopped.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    logger.info("Health monitor stopped")
    return 0

def main():
    parser = argparse.ArgumentParser(description="Poll database health until interrupted")
    parser.add_argument('--interval', type=float, default=30.0,
                        help="Seconds between health checks (default: 30)")
    args = parser.parse_args()
    sys.exit(asyncio.run(monitor(args.interval)))

if __name__ == "__main__":
    main()
