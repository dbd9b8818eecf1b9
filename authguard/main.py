import logging
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request

from authguard.api.auth import router as auth_router
from authguard.api.health import router as health_router
from authguard.core.config import APP_VERSION, settings
from authguard.core.errors import HTTPError, http_error_handler
from authguard.core.logging import setup_logging
from authguard.core.redis import close_redis
from authguard.db.session import async_session_maker, engine
from authguard.services.scheduler import SchedulerService
from authguard.services.sign_in import build_sign_in_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    setup_logging()

    # Collaborators are wired once here and shared by every request
    service = build_sign_in_service(settings, async_session_maker)
    app.state.sign_in_service = service

    scheduler_service = SchedulerService(
        rate_limiter=service.rate_limiter,
        attempts=service.attempts,
        retention_days=settings.AUTH_ATTEMPT_RETENTION_DAYS,
        interval_minutes=settings.AUTH_CLEANUP_INTERVAL_MINUTES,
    )
    logger.info("Starting scheduler service")
    scheduler_service.start()

    yield

    logger.info("Stopping scheduler service")
    scheduler_service.stop()

    if settings.AUTH_RATE_LIMIT_BACKEND == "redis":
        logger.info("Closing Redis connection")
        await close_redis()

    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)

# Register custom exception handler for standardized error responses
app.add_exception_handler(HTTPError, http_error_handler)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID for tracking and debugging."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    # Bind request_id to all log entries during this request
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()

    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Security headers for a JSON-only API."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["Cache-Control"] = "no-store"
    if not settings.DEBUG:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


app.include_router(health_router)
app.include_router(auth_router, prefix="/api")
