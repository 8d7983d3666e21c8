"""Health check endpoints."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from clarity.api.deps import SessionDep
from clarity.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check - just confirms the service is running."""
    return {"status": "ok"}


@router.get("/db")
async def health_check_db(session: SessionDep):
    """Health check with database connectivity.

    With the memory store backend the database is not on the auth path, so a
    failure is reported as degraded rather than unavailable.
    """
    try:
        await session.execute(text("SELECT 1"))
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e!r}")
        status_code = 503 if settings.store_backend == "database" else 200
        return JSONResponse(
            status_code=status_code,
            content={"status": "error" if status_code == 503 else "degraded", "database": "disconnected"},
        )
