"""Main application entry point."""

import os

from newsroom.config.environment import IS_PRODUCTION_ENVIRONMENT
from newsroom.api.app import app  # noqa: F401  (lets `uvicorn main:app` work)

PORT = int(os.environ.get('PORT', '3001'))

if __name__ == "__main__":
    import uvicorn
    if not IS_PRODUCTION_ENVIRONMENT:
        # Development mode - reload needs the import string
        uvicorn.run(
            "newsroom.api.app:app",
            host="0.0.0.0",
            port=PORT,
            reload=True,
            log_level="debug"
        )
    else:
        # Production mode - use string reference for proper multi-worker support
        uvicorn.run(
            "newsroom.api.app:app",  # String reference required for multiple workers
            host="0.0.0.0",
            port=PORT,
            reload=False,
            workers=int(os.environ.get('WEB_CONCURRENCY', '2')),
            log_level="info",
            proxy_headers=True,
            forwarded_allow_ips="*"
        )
