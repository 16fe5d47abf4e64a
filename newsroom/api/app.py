"""FastAPI application configuration module."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

# Internal imports
from newsroom import __version__
from newsroom.config.environment import IS_PRODUCTION_ENVIRONMENT, ENVIRONMENT_NAME # Environment must be imported first
from newsroom.config.cors import CORS_CONFIG
from newsroom.utils.logging_config import setup_logging
from newsroom.db import Database, DatabaseError
from .routes import health

# Set up logging
setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    db = Database.get_instance()
    # Startup
    try:
        await db.connect()
    except DatabaseError as e:
        # Keep serving; /api/health reports the database as unhealthy
        logger.error(f"Failed to connect to database on startup: {e}")
    yield
    # Shutdown
    await db.shutdown()

def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()

async def database_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate database failures into a generic 500 without leaking driver text."""
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {"message": "Internal server error"},
            "timestamp": _utc_now(),
        },
    )

def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Newsroom API",
        description="API backend for the community news site and its admin dashboard",
        version=__version__,
        docs_url=None if IS_PRODUCTION_ENVIRONMENT else '/api/docs',
        redoc_url=None if IS_PRODUCTION_ENVIRONMENT else '/api/redoc',
        lifespan=lifespan
    )

    # Configure CORS
    app.add_middleware(CORSMiddleware, **CORS_CONFIG)

    app.add_exception_handler(DatabaseError, database_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    app.include_router(health.router, prefix="/api")

    @app.get("/")
    async def root():
        """Service banner."""
        return {
            "message": "Newsroom API Server",
            "version": __version__,
            "status": "running",
            "environment": ENVIRONMENT_NAME,
            "timestamp": _utc_now(),
        }

    return app

# Create the application instance
app = create_application()
