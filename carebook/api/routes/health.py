"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from carebook import __version__
from carebook.api.dependencies import get_session_factory
from carebook.core.database import SessionFactory, ping

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {
        "status": "healthy",
        "service": "carebook",
        "version": __version__,
    }


@router.get("/health/ready")
async def readiness_check(session_factory: SessionFactory = Depends(get_session_factory)):
    """Readiness check - verifies the scheduling store answers queries."""
    try:
        await ping(session_factory)
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "errors": [f"Database check failed: {e}"]},
        )
    return {"status": "ready", "database": "ok"}


@router.get("/health/live")
async def liveness_check() -> dict:
    """Liveness check - basic process health."""
    return {"status": "alive"}
