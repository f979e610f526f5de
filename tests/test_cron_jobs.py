# tests/test_cron_jobs.py
from datetime import timedelta

import pytest
from sqlalchemy import select

from seeding.core.exceptions import DatabaseError, ValidationError
from seeding.db.base import utcnow
from seeding.models import Deliverable, Notification, Strike
from seeding.models.enums import DeliverableStatus, DeliverableType, MatchStatus
from seeding.services import cron_jobs, cron_lock, rate_limit
from seeding.services.cron_jobs import run_job


async def _deliverable(session_factory, deliverable_id):
    async with session_factory() as session:
        return await session.get(Deliverable, deliverable_id)


@pytest.mark.asyncio
async def test_run_skips_while_lease_is_held(session_factory):
    now = utcnow()
    async with session_factory() as session:
        held = await cron_lock.acquire(session, "verify", now=now)
    assert held.acquired

    result = await run_job(session_factory, "verify", now=now + timedelta(seconds=10))

    assert result == {"job": "verify", "skipped": True, "reason": "locked"}


@pytest.mark.asyncio
async def test_run_releases_lease_when_done(session_factory):
    first = await run_job(session_factory, "verify")
    second = await run_job(session_factory, "verify", now=utcnow() + timedelta(seconds=1))

    assert first["skipped"] is False
    assert second["skipped"] is False


@pytest.mark.asyncio
async def test_unknown_job(session_factory):
    with pytest.raises(ValidationError) as exc_info:
        await run_job(session_factory, "reindex")
    assert exc_info.value.code == "unknown_job"


@pytest.mark.asyncio
async def test_verify_fails_overdue_accepted_deliverables(session_factory, world, make_match, make_creator, make_offer):
    now = utcnow()
    overdue_match, overdue = await make_match(
        world.offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.DUE,
        due_at=now - timedelta(hours=1),
    )
    pending_creator = await make_creator()
    _, pending = await make_match(
        world.offer.id,
        pending_creator.creator.id,
        status=MatchStatus.PENDING_APPROVAL,
        deliverable_status=DeliverableStatus.DUE,
        due_at=now - timedelta(days=3),
    )
    other_offer = await make_offer(world.brand.brand.id)
    _, submitted = await make_match(other_offer.id, world.creator.creator.id, due_at=now - timedelta(days=1))

    result = await run_job(session_factory, "verify", now=now)

    assert result["skipped"] is False
    assert result["failed"] == 1
    assert result["strikes"] == 1
    assert (await _deliverable(session_factory, overdue.id)).status == DeliverableStatus.FAILED.value
    assert (await _deliverable(session_factory, pending.id)).status == DeliverableStatus.DUE.value
    assert (await _deliverable(session_factory, submitted.id)).status == DeliverableStatus.SUBMITTED.value
    async with session_factory() as session:
        strike = (await session.execute(select(Strike).where(Strike.match_id == overdue_match.id))).scalar_one()
    assert strike.reason == "Missed deadline"

    rerun = await run_job(session_factory, "verify", now=utcnow() + timedelta(seconds=1))
    assert rerun["failed"] == 0 and rerun["strikes"] == 0


@pytest.mark.asyncio
async def test_verify_sends_one_reminder_per_deliverable(session_factory, world, make_match):
    now = utcnow()
    _, soon = await make_match(
        world.offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.DUE,
        due_at=now + timedelta(hours=12),
    )

    first = await run_job(session_factory, "verify", now=now)
    second = await run_job(session_factory, "verify", now=utcnow() + timedelta(seconds=1))

    assert first["reminded"] == 1
    assert second["reminded"] == 0
    stored = await _deliverable(session_factory, soon.id)
    assert stored.reminder_sent_at is not None
    async with session_factory() as session:
        templates = (await session.execute(select(Notification.template))).scalars().all()
    assert templates == ["deliverable_due_soon"]


@pytest.mark.asyncio
async def test_prune_job(session_factory):
    now = utcnow()
    async with session_factory() as session:
        await rate_limit.check(session, "stale", 5, 60, now=now - timedelta(days=5))
        await rate_limit.check(session, "fresh", 5, 60, now=now)

    result = await run_job(session_factory, "rate-limit-prune", now=now)

    assert result == {"job": "rate-limit-prune", "skipped": False, "pruned": 1}


@pytest.mark.asyncio
async def test_verify_never_expires_ugc_only_work(session_factory, world, make_match):
    now = utcnow()
    match, ugc = await make_match(
        world.offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.DUE,
        due_at=now - timedelta(days=2),
        expected_type=DeliverableType.UGC_ONLY.value,
    )

    result = await run_job(session_factory, "verify", now=now)

    assert result["failed"] == 0
    assert result["strikes"] == 0
    assert (await _deliverable(session_factory, ugc.id)).status == DeliverableStatus.DUE.value
    async with session_factory() as session:
        strikes = (await session.execute(select(Strike).where(Strike.match_id == match.id))).scalars().all()
    assert strikes == []


@pytest.mark.asyncio
async def test_verify_keeps_going_after_a_store_error(session_factory, world, make_match, make_offer, monkeypatch):
    now = utcnow()
    _, broken = await make_match(
        world.offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.DUE,
        due_at=now - timedelta(days=2),
    )
    second_offer = await make_offer(world.brand.brand.id)
    _, healthy = await make_match(
        second_offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.DUE,
        due_at=now - timedelta(days=1),
    )

    real_apply = cron_jobs.apply

    async def flaky_apply(session, ctx, command, **kwargs):
        if command.deliverable_id == broken.id:
            raise DatabaseError(details={"error": "connection reset"})
        return await real_apply(session, ctx, command, **kwargs)

    monkeypatch.setattr(cron_jobs, "apply", flaky_apply)

    result = await run_job(session_factory, "verify", now=now)

    assert result["errors"] == 1
    assert result["failed"] == 1
    assert (await _deliverable(session_factory, broken.id)).status == DeliverableStatus.DUE.value
    assert (await _deliverable(session_factory, healthy.id)).status == DeliverableStatus.FAILED.value


@pytest.mark.asyncio
async def test_reminders_keep_going_after_a_store_error(session_factory, world, make_match, make_offer, monkeypatch):
    now = utcnow()
    _, first = await make_match(
        world.offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.DUE,
        due_at=now + timedelta(hours=6),
    )
    second_offer = await make_offer(world.brand.brand.id)
    _, second = await make_match(
        second_offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.DUE,
        due_at=now + timedelta(hours=12),
    )

    real_send = cron_jobs._send_reminder

    async def flaky_send(session, row, now):
        if row.id == first.id:
            raise DatabaseError(details={"error": "connection reset"})
        return await real_send(session, row, now)

    monkeypatch.setattr(cron_jobs, "_send_reminder", flaky_send)

    result = await run_job(session_factory, "verify", now=now)

    assert result["reminder_errors"] == 1
    assert result["reminded"] == 1
    assert (await _deliverable(session_factory, first.id)).reminder_sent_at is None
    assert (await _deliverable(session_factory, second.id)).reminder_sent_at is not None
