"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from sqlalchemy import text

from tutorbook.core.config import get_settings
from tutorbook.core.database import SessionLocal, close_engine, session_scope
from tutorbook.core.metrics import build_metrics_response, instrument_http_request
from tutorbook.modules.booking.router import router as booking_router
from tutorbook.modules.identity.repository import IdentityRepository
from tutorbook.modules.identity.router import router as identity_router
from tutorbook.modules.identity.service import IdentityService
from tutorbook.modules.meetings.router import router as meetings_router
from tutorbook.modules.notifications.dispatcher import get_notification_dispatcher
from tutorbook.modules.notifications.router import router as notifications_router
from tutorbook.modules.scheduling.router import router as scheduling_router
from tutorbook.shared.exceptions import register_exception_handlers
from tutorbook.shared.utils import utc_now

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Application startup and shutdown hooks."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger.info("Starting %s", settings.app_name)

    try:
        async with session_scope() as session:
            await IdentityService(IdentityRepository(session)).ensure_default_roles()
    except Exception:
        logger.exception("Failed during startup initialization")
        raise
    logger.info("Default roles ensured")

    dispatcher = get_notification_dispatcher()
    await dispatcher.start()

    yield

    logger.info("Shutting down %s", settings.app_name)
    await dispatcher.stop()
    await close_engine()


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)
app.middleware("http")(instrument_http_request)

register_exception_handlers(app)

app.include_router(identity_router, prefix=settings.api_prefix)
app.include_router(scheduling_router, prefix=settings.api_prefix)
app.include_router(booking_router, prefix=settings.api_prefix)
app.include_router(meetings_router, prefix=settings.api_prefix)
app.include_router(notifications_router, prefix=settings.api_prefix)


@app.get("/health")
async def healthcheck() -> dict[str, str]:
    """Liveness probe endpoint."""
    return {"status": "ok"}


async def _is_database_ready() -> bool:
    """Return True if DB accepts basic queries."""
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Database readiness check failed")
        return False


@app.get("/ready")
async def readiness_check() -> dict[str, str]:
    """Readiness probe endpoint with DB dependency check."""
    if not await _is_database_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database is not ready",
        )
    dispatcher = get_notification_dispatcher()
    return {
        "status": "ready",
        "database": "ok",
        "notifications": "running" if dispatcher.is_running else "stopped",
        "timestamp": utc_now().isoformat(),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(_: Request) -> Response:
    """Prometheus metrics endpoint."""
    return build_metrics_response()
