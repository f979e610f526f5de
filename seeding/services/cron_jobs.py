# seeding/services/cron_jobs.py
"""
Scheduled jobs. Each run holds the job's CronLock for its duration; a run
that cannot take the lock reports itself skipped and does nothing.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seeding.core.config import settings
from seeding.core.exceptions import ConflictError, DatabaseError, NotFoundError, ValidationError
from seeding.core.logging import get_structlog_logger
from seeding.db.base import as_utc, utcnow
from seeding.db.session import atomic
from seeding.models import Deliverable, Match, Offer
from seeding.models.enums import DeliverableStatus, DeliverableType
from seeding.services import cron_lock, notifications, rate_limit
from seeding.services.auth import SystemContext
from seeding.services.fulfillment import ENFORCEABLE_MATCH_STATUSES, ExpireDeliverable, apply

logger = get_structlog_logger(__name__)

# UGC-only deals have no public post, so there is no deadline to enforce
DEADLINE_TYPES = (DeliverableType.REELS.value, DeliverableType.FEED.value)


async def _send_reminder(session: AsyncSession, row, now: datetime) -> bool:
    notification_id = None
    async with atomic(session):
        result = await session.execute(
            update(Deliverable)
            .where(Deliverable.id == row.id, Deliverable.reminder_sent_at.is_(None))
            .values(reminder_sent_at=now)
        )
        if result.rowcount:
            notification_id = await notifications.notify_creator(
                session,
                row.creator_id,
                "deliverable_due_soon",
                {"offer_title": row.title, "due_at": as_utc(row.due_at).isoformat()},
            )
    if notification_id is not None:
        await notifications.dispatch(session, [notification_id])
    return bool(result.rowcount)


async def send_due_reminders(session: AsyncSession, now: datetime) -> Dict[str, int]:
    horizon = now + timedelta(hours=settings.deliverable_reminder_hours)
    rows = (
        await session.execute(
            select(Deliverable.id, Deliverable.due_at, Match.creator_id, Offer.title)
            .join(Match, Match.id == Deliverable.match_id)
            .join(Offer, Offer.id == Match.offer_id)
            .where(
                Deliverable.status == DeliverableStatus.DUE.value,
                Deliverable.reminder_sent_at.is_(None),
                Deliverable.due_at > now,
                Deliverable.due_at <= horizon,
                Match.status.in_(ENFORCEABLE_MATCH_STATUSES),
            )
        )
    ).all()

    summary = {"reminded": 0, "reminder_errors": 0}
    for row in rows:
        try:
            sent = await _send_reminder(session, row, now)
        except DatabaseError as e:
            summary["reminder_errors"] += 1
            logger.error("cron.verify.reminder_failed", deliverable_id=str(row.id), code=e.code)
            continue
        if sent:
            summary["reminded"] += 1
    return summary


async def enforce_deadlines(session: AsyncSession, now: datetime) -> Dict[str, int]:
    """Fail every overdue DUE post deliverable through the regular transition."""
    overdue = (
        await session.execute(
            select(Deliverable.id)
            .join(Match, Match.id == Deliverable.match_id)
            .where(
                Deliverable.status == DeliverableStatus.DUE.value,
                Deliverable.due_at < now,
                Deliverable.expected_type.in_(DEADLINE_TYPES),
                Match.status.in_(ENFORCEABLE_MATCH_STATUSES),
            )
            .order_by(Deliverable.due_at)
        )
    ).scalars().all()

    ctx = SystemContext(job="verify")
    summary = {"failed": 0, "strikes": 0, "conflicts": 0, "errors": 0}
    for deliverable_id in overdue:
        try:
            result = await apply(session, ctx, ExpireDeliverable(deliverable_id), now=now)
        except (ConflictError, NotFoundError) as e:
            summary["conflicts"] += 1
            logger.info("cron.verify.skip", deliverable_id=str(deliverable_id), code=e.code)
            continue
        except DatabaseError as e:
            summary["errors"] += 1
            logger.error("cron.verify.expire_failed", deliverable_id=str(deliverable_id), code=e.code)
            continue
        if result.changed:
            summary["failed"] += 1
        if result.strike_id is not None:
            summary["strikes"] += 1
    return summary


async def verify_job(session: AsyncSession, now: datetime) -> Dict[str, Any]:
    reminded = await send_due_reminders(session, now)
    enforced = await enforce_deadlines(session, now)
    return {**reminded, **enforced}


async def prune_job(session: AsyncSession, now: datetime) -> Dict[str, Any]:
    return {"pruned": await rate_limit.prune_buckets(session, now=now)}


JOBS: Dict[str, Callable[[AsyncSession, datetime], Awaitable[Dict[str, Any]]]] = {
    "verify": verify_job,
    "rate-limit-prune": prune_job,
}


async def run_job(
    sessionmaker: async_sessionmaker[AsyncSession],
    job: str,
    *,
    now: Optional[datetime] = None,
    ttl_seconds: Optional[int] = None,
) -> Dict[str, Any]:
    """Run ``job`` under its lease. Skips without retry if the lease is held."""
    func = JOBS.get(job)
    if func is None:
        raise ValidationError(f"Unknown job {job}", code="unknown_job", details={"jobs": sorted(JOBS)})

    now = now or utcnow()
    async with sessionmaker() as session:
        lock = await cron_lock.acquire(session, job, ttl_seconds=ttl_seconds, now=now)
        if not lock.acquired:
            return {"job": job, "skipped": True, "reason": "locked"}

        try:
            summary = await func(session, now)
        finally:
            await cron_lock.release(session, job, lock.holder)

    logger.info("cron.completed", job=job, **summary)
    return {"job": job, "skipped": False, **summary}
