#!/usr/bin/env python3
"""Reset the database connection and clear server-side prepared statements.

Run this when requests keep failing with "prepared statement ... already
exists" errors. It opens its own fresh client, deallocates every prepared
statement on that session (PostgreSQL only) and verifies connectivity.

Usage:
    python scripts/reset_db_connection.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to Python path
sys.path.append(str(Path(__file__).parent.parent))

from sqlalchemy import text

from newsroom.config.environment import IS_PRODUCTION_ENVIRONMENT  # noqa: F401
from newsroom.db import Database, DatabaseError
from newsroom.utils.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

async def reset_database_connection() -> bool:
    """Return True when the database answered after clearing prepared statements."""
    logger.info("Resetting database connection and clearing prepared statements...")
    db = Database.get_instance()

    try:
        client = db.create_fresh_client()
    except DatabaseError as e:
        logger.error(f"Database connection reset failed: {e}")
        return False

    try:
        await client.open()
        logger.info("Connected to database")

        async with client.engine.connect() as conn:
            if client.engine.dialect.name == 'postgresql':
                await conn.execute(text('DEALLOCATE ALL'))
                logger.info("Cleared all prepared statements")
            else:
                logger.info(f"Prepared statement reset not supported on {client.engine.dialect.name}, skipping")

            await conn.execute(text('SELECT 1'))
            logger.info("Database connectivity test passed")

        return True
    except Exception as e:
        logger.error(f"Database connection reset failed: {e}")
        return False
    finally:
        await db.release_fresh_client(client)
        logger.info("Database disconnected")

if __name__ == "__main__":
    success = asyncio.run(reset_database_connection())
    sys.exit(0 if success else 1)
