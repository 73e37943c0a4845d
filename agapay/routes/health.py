"""
Health check endpoints.
Used for monitoring, deployment readiness checks, and basic connectivity tests.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from google.api_core import exceptions as gexc

from agapay.config.firebase import get_db
from agapay.core.settings import settings
from agapay.utils.firestore_helpers import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check(request: Request):
    """
    Basic health check endpoint.
    Returns 200 if service is running.
    """
    registry = getattr(request.app.state, "connections", None)
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "publish_sweep": settings.PUBLISH_SWEEP_ENABLED,
        "realtime_connections": registry.connection_count() if registry is not None else 0,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/db")
async def database_health():
    """
    Database connectivity check.
    Lists the root collections as a lightweight round trip.
    """
    try:
        collections = list(get_db().collections())
    except gexc.GoogleAPICallError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Database connection failed")

    return {
        "status": "healthy",
        "database": "firestore",
        "connected": True,
        "collections_count": len(collections),
        "timestamp": utcnow().isoformat(),
    }
