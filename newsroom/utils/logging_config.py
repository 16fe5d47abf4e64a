"""Logging configuration for the application."""

import logging
import sys

_configured = False

def setup_logging():
    """Configure logging for the application.

    Safe to call more than once; the console handler is only attached the first time.
    """
    global _configured
    if _configured:
        return

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(console_handler)

    # Set higher log levels for noisy components
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    # SQL statement logging is switched on through DB_ECHO only
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    for logger_name in ('newsroom.db', 'newsroom.api'):
        logging.getLogger(logger_name).setLevel(logging.INFO)

    _configured = True
