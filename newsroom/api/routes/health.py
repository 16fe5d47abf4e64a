"""Health check routes for the FastAPI application."""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from newsroom import __version__
from newsroom.config.environment import ENVIRONMENT_NAME
from newsroom.db import Database, get_database

router = APIRouter(tags=["health"])

# Process start, for the uptime field
STARTED_AT = time.monotonic()

@router.get("/health")
async def health_check(db: Database = Depends(get_database)):
    """Report API and database health. Responds 503 when the database is unhealthy."""
    db_healthy = await db.health_check()
    now = datetime.now(timezone.utc).isoformat()

    health_data = {
        "status": "healthy",
        "timestamp": now,
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "environment": ENVIRONMENT_NAME,
        "version": __version__,
        "services": {
            "database": "healthy" if db_healthy else "unhealthy",
            "api": "healthy",
        },
    }

    return JSONResponse(
        status_code=200 if db_healthy else 503,
        content={
            "success": True,
            "data": health_data,
            "timestamp": now,
        },
    )
