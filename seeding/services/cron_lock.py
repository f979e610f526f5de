# seeding/services/cron_lock.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.config import settings
from seeding.core.logging import get_structlog_logger
from seeding.db.base import as_utc, utcnow
from seeding.db.session import atomic
from seeding.db.statements import insert_for
from seeding.models import CronLock

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class LockResult:
    acquired: bool
    job: str
    holder: str
    locked_until: Optional[datetime]


def new_holder_id() -> str:
    return uuid.uuid4().hex


async def acquire(
    session: AsyncSession,
    job: str,
    *,
    ttl_seconds: Optional[int] = None,
    holder: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LockResult:
    """
    Try to take the lease on ``job`` without waiting.

    The row is inserted, or overwritten only when the current lease has
    expired. Ownership is decided by reading the holder back after the
    write: two callers racing for the same expired lease both issue the
    upsert, but only the one whose id is stored afterwards owns the lock.
    """
    ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else settings.cron_lock_ttl_seconds
    holder = holder or new_holder_id()
    now = now or utcnow()
    locked_until = now + timedelta(seconds=ttl)

    stmt = insert_for(session, CronLock).values(job=job, locked_until=locked_until, locked_by=holder)
    stmt = stmt.on_conflict_do_update(
        index_elements=[CronLock.job],
        set_={"locked_until": stmt.excluded.locked_until, "locked_by": stmt.excluded.locked_by},
        where=CronLock.locked_until < now,
    )

    async with atomic(session):
        await session.execute(stmt)
        row = (
            await session.execute(
                select(CronLock.locked_by, CronLock.locked_until).where(CronLock.job == job)
            )
        ).one_or_none()

    if row is None or row.locked_by != holder:
        logger.info(
            "cron_lock.busy",
            job=job,
            locked_until=as_utc(row.locked_until).isoformat() if row else None,
        )
        return LockResult(
            acquired=False,
            job=job,
            holder=holder,
            locked_until=as_utc(row.locked_until) if row else None,
        )

    logger.info("cron_lock.acquired", job=job, holder=holder, ttl_seconds=ttl)
    return LockResult(acquired=True, job=job, holder=holder, locked_until=as_utc(row.locked_until))


async def release(
    session: AsyncSession,
    job: str,
    holder: str,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Expire the lease if ``holder`` still owns it. Never raises on a lost lease."""
    now = now or utcnow()
    async with atomic(session):
        result = await session.execute(
            update(CronLock)
            .where(CronLock.job == job, CronLock.locked_by == holder)
            .values(locked_until=now)
        )

    released = result.rowcount > 0
    logger.info("cron_lock.released" if released else "cron_lock.release_skipped", job=job, holder=holder)
    return released
