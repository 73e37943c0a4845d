"""
AgapayAlert - FastAPI Application Entry Point

Incident-report backend: citizens file missing-person and related reports,
the nearest police station is assigned, staff move reports through
Pending -> Assigned -> Under Investigation -> Resolved, and consented
reports are broadcast over push, email and Facebook.
"""

import asyncio
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agapay.config.firebase import initialize_firestore
from agapay.core.errors import AgapayError
from agapay.core.logging import init_logging
from agapay.core.settings import settings
from agapay.routes import analytics, broadcast, finder_reports, health, notifications, realtime, reports, stations
from agapay.services.broadcast_scheduler import get_broadcast_scheduler
from agapay.services.connection_registry import ConnectionRegistry
from agapay.services.notification_dispatcher import init_notification_dispatcher

logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Incident reporting, station assignment and public broadcast for missing-person alerts",
    debug=settings.DEBUG
)


@app.exception_handler(AgapayError)
async def agapay_exception_handler(request: Request, exc: AgapayError):
    """Domain errors carry their own status code and field details."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


# Pydantic validation error handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder({
            "success": False,
            "code": "request_validation_error",
            "msg": "Invalid request",
            "details": exc.errors(),
        }),
    )


# Global exception handler: full traceback in the log, nothing internal in the body
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "code": "internal_error", "msg": "Internal server error", "details": {}},
    )


# CORS - origins come from settings, never "*"
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Application lifecycle events
@app.on_event("startup")
async def startup_event():
    """
    Initialize services on application startup:
    logging, Firestore, the realtime registry, the notification dispatcher
    and the scheduled-publication sweep.
    """
    init_logging(settings.LOG_LEVEL)
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    app.state.connections = ConnectionRegistry()
    app.state.sweep_task = None

    try:
        initialize_firestore()
    except Exception as e:
        logger.error(f"Firestore initialization failed: {e}", exc_info=True)
        logger.warning("The app will start but database operations will fail")
        return

    init_notification_dispatcher(app.state.connections)

    if settings.PUBLISH_SWEEP_ENABLED:
        app.state.sweep_task = asyncio.create_task(
            get_broadcast_scheduler().sweep_forever(settings.PUBLISH_SWEEP_INTERVAL_SECONDS)
        )


@app.on_event("shutdown")
async def shutdown_event():
    """
    Cleanup on application shutdown.
    """
    task = getattr(app.state, "sweep_task", None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    logger.info(f"Shutting down {settings.APP_NAME}")


# Include routers
app.include_router(health.router)
app.include_router(reports.router)
app.include_router(broadcast.router)
app.include_router(stations.router)
app.include_router(finder_reports.router)
app.include_router(notifications.router)
app.include_router(analytics.router)
app.include_router(realtime.router)


# Root endpoint
@app.get("/")
async def root():
    """
    Root endpoint - API information.
    """
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "realtime": "/ws?token={firebase_id_token}",
    }
