# seeding/main.py
from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from seeding.core.config import settings
from seeding.core.exceptions import BaseAPIException, DatabaseError, RateLimitError
from seeding.core.logging import configure_structlog, get_structlog_logger
from seeding.db.session import create_database_engine, dispose_engine
from seeding.middleware.logging import LoggingMiddleware
from seeding.middleware.rate_limiter import RateLimitingMiddleware
from seeding.middleware.request_id import RequestIdMiddleware
from seeding.routes import brand, creator, cron, health
from seeding.services.migration_lock import run_migrations

# Generic, non-leaking messages per status for production responses
GENERIC_MESSAGES = {
    400: "Invalid request",
    401: "Unauthorized",
    402: "Payment required",
    403: "Forbidden",
    404: "Not found",
    409: "Conflict",
    422: "Invalid request",
    423: "Resource busy",
    429: "Too many requests",
    500: "Internal error",
    503: "Service unavailable",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("application.starting", environment=settings.environment)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[
                AsyncioIntegration(),
                FastApiIntegration(),
                StarletteIntegration(),
            ],
            traces_sample_rate=1.0 if settings.is_development else 0.1,
            send_default_pii=False,
        )
        logger.info("sentry.initialized")

    engine = create_database_engine()
    if settings.migrate_on_startup:
        await run_migrations(engine)

    logger.info("application.started")
    yield

    logger.info("application.shutting_down")
    await dispose_engine()
    logger.info("application.shutdown_complete")


configure_structlog()
logger = get_structlog_logger(__name__)

app = FastAPI(
    title="Seeding API",
    version="1.0.0",
    description="Product-seeding fulfillment core: offers, matches, deliverables, strikes",
    docs_url="/docs" if settings.is_development else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins(),
    allow_credentials=True,
    allow_methods=settings.methods(),
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIdMiddleware)

if not settings.is_development and not settings.is_testing:
    app.add_middleware(RateLimitingMiddleware)


def _error_body(status_code: int, code: str, message: str, details: dict) -> dict:
    if settings.is_production:
        return {"ok": False, "code": code, "error": GENERIC_MESSAGES.get(status_code, "Error")}
    body = {"ok": False, "code": code, "error": message}
    if details:
        body["details"] = details
    return body


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Render domain errors with their taxonomy code."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "api.exception",
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details if isinstance(exc, DatabaseError) else None,
        path=request.url.path,
        method=request.method,
    )

    headers = {}
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    # Store error details never leave the server outside development
    details = exc.details if settings.is_development or not isinstance(exc, DatabaseError) else {}
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.status_code, exc.code, exc.message, details),
        headers=headers or None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.warning("validation.error", path=request.url.path, method=request.method, errors=errors)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(422, "validation_error", "Request validation failed", {"errors": errors}),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    error_id = uuid.uuid4().hex[:12]
    logger.error(
        "unhandled.exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=exc,
    )

    message = f"Internal server error: {exc}" if settings.is_development else "Internal server error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(500, "internal_error", message, {"error_id": error_id}),
        headers={"X-Error-ID": error_id},
    )


app.include_router(health.router, prefix=settings.api_prefix)
app.include_router(brand.router, prefix=settings.api_prefix)
app.include_router(creator.router, prefix=settings.api_prefix)
app.include_router(cron.router, prefix=settings.api_prefix)

if not settings.is_testing:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Seeding API",
        "version": app.version,
        "environment": settings.environment,
        "health": f"{settings.api_prefix}/health",
    }


logger.info("application.configured", environment=settings.environment)
