# seeding/services/rate_limit.py
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.config import settings
from seeding.core.exceptions import RateLimitError, ValidationError
from seeding.core.logging import get_structlog_logger
from seeding.db.base import utcnow
from seeding.db.session import atomic
from seeding.db.statements import insert_for
from seeding.models import RateLimitBucket

logger = get_structlog_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    window_start: datetime
    window_end: datetime

    def retry_after(self, now: Optional[datetime] = None) -> int:
        remaining = (self.window_end - (now or utcnow())).total_seconds()
        return max(1, int(remaining + 0.999))


def window_bounds(now: datetime, window_seconds: float) -> tuple[datetime, datetime]:
    """Fixed window containing ``now``: floor(now / window) * window."""
    window_ms = max(1, int(window_seconds * 1000))
    now_ms = int((now - EPOCH).total_seconds() * 1000)
    start_ms = (now_ms // window_ms) * window_ms
    start = EPOCH + timedelta(milliseconds=start_ms)
    return start, start + timedelta(milliseconds=window_ms)


def ip_key(forwarded_for: Optional[str], client_host: Optional[str] = None) -> str:
    """Hashed identity for a caller address; the first X-Forwarded-For hop wins."""
    ip = ""
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
    if not ip and client_host:
        ip = client_host.strip()
    if not ip:
        return "ip:unknown"
    return "ip:" + hashlib.sha256(ip.encode("utf-8")).hexdigest()


async def check(
    session: AsyncSession,
    key: str,
    limit: int,
    window_seconds: float,
    *,
    now: Optional[datetime] = None,
) -> RateLimitResult:
    """
    Count one hit against ``key`` in the current fixed window.

    The increment is a single upsert returning the new count, so concurrent
    callers never lose updates. A burst straddling a window boundary can
    see up to twice ``limit`` admissions.
    """
    if limit <= 0 or window_seconds <= 0:
        raise ValidationError("limit and window must be positive", code="invalid_rate_limit")

    now = now or utcnow()
    window_start, window_end = window_bounds(now, window_seconds)

    stmt = insert_for(session, RateLimitBucket).values(key=key, window_start=window_start, count=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[RateLimitBucket.key, RateLimitBucket.window_start],
        set_={"count": RateLimitBucket.count + 1},
    ).returning(RateLimitBucket.count)

    async with atomic(session):
        count = int((await session.execute(stmt)).scalar_one())

    allowed = count <= limit
    if not allowed:
        logger.warning(
            "rate_limit.exceeded",
            key=key[:80],
            count=count,
            limit=limit,
            window_start=window_start.isoformat(),
        )

    return RateLimitResult(
        allowed=allowed,
        count=count,
        limit=limit,
        window_start=window_start,
        window_end=window_end,
    )


async def enforce(
    session: AsyncSession,
    key: str,
    limit: int,
    window_seconds: float,
    *,
    now: Optional[datetime] = None,
) -> RateLimitResult:
    """``check`` that raises RateLimitError once the window is exhausted."""
    result = await check(session, key, limit, window_seconds, now=now)
    if not result.allowed:
        retry_after = result.retry_after(now)
        raise RateLimitError(
            retry_after=retry_after,
            details={"limit": limit, "window_seconds": window_seconds, "retry_after": retry_after},
        )
    return result


async def prune_buckets(
    session: AsyncSession,
    *,
    retention_hours: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """Delete buckets whose window started before the retention horizon."""
    hours = retention_hours or settings.rate_limit_retention_hours
    cutoff = (now or utcnow()) - timedelta(hours=hours)

    async with atomic(session):
        result = await session.execute(
            delete(RateLimitBucket).where(RateLimitBucket.window_start < cutoff)
        )

    logger.info("rate_limit.pruned", deleted=result.rowcount, cutoff=cutoff.isoformat())
    return result.rowcount
