# seeding/middleware/rate_limiter.py
from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from seeding.core.config import settings
from seeding.core.exceptions import DatabaseError
from seeding.core.logging import get_structlog_logger
from seeding.db.session import get_sessionmaker
from seeding.services import rate_limit

logger = get_structlog_logger(__name__)


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Per-client fixed-window limit on every API request, counted in the database."""

    def __init__(self, app):
        super().__init__(app)
        self.rate_limit_requests = settings.rate_limit_requests
        self.rate_limit_period = settings.rate_limit_period
        self.exempt_paths = {"/api/health", "/api/health/live", "/metrics", "/docs", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client_key = rate_limit.ip_key(
            request.headers.get("X-Forwarded-For"),
            request.client.host if request.client else None,
        )

        try:
            async with get_sessionmaker()() as session:
                result = await rate_limit.check(
                    session,
                    f"http:{client_key}",
                    self.rate_limit_requests,
                    self.rate_limit_period,
                )
        except DatabaseError:
            # Fail open: the store error is already logged by the session layer
            return await call_next(request)

        if not result.allowed:
            retry_after = result.retry_after()
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"ok": False, "code": "rate_limited", "error": "Too many requests"},
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.rate_limit_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.rate_limit_requests - result.count))
        response.headers["X-RateLimit-Reset"] = str(int(result.window_end.timestamp()))
        return response
