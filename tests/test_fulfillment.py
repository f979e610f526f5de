# tests/test_fulfillment.py
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from seeding.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from seeding.db.base import as_utc, utcnow
from seeding.models import CreatorOfferRejection, Deliverable, DeliverableReview, Match, Notification, Strike
from seeding.models.enums import DeliverableStatus, DeliverableType, MatchStatus, MembershipRole
from seeding.services import fulfillment, offers
from seeding.services.auth import BrandContext, SystemContext
from seeding.services.fulfillment import (
    AcceptMatch,
    CancelMatch,
    ExpireDeliverable,
    FailDeliverable,
    MarkShipped,
    RejectMatch,
    RequestChanges,
    SubmitDeliverable,
    VerifyDeliverable,
)


async def _fetch(session_factory, model, entity_id):
    async with session_factory() as session:
        return await session.get(model, entity_id)


async def _strike_count(session_factory, match_id):
    async with session_factory() as session:
        result = await session.execute(select(func.count(Strike.id)).where(Strike.match_id == match_id))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_failing_pending_claim_issues_exactly_one_strike(db_session, session_factory, world):
    claim = await offers.claim_offer(db_session, world.creator.ctx, world.offer.id)
    assert claim.status == MatchStatus.PENDING_APPROVAL.value
    assert claim.deliverable_id is not None

    first = await fulfillment.apply(
        db_session, world.brand.ctx, FailDeliverable(claim.deliverable_id, reason="Low quality")
    )
    second = await fulfillment.apply(
        db_session, world.brand.ctx, FailDeliverable(claim.deliverable_id, reason="Low quality")
    )

    assert first.changed and first.status == DeliverableStatus.FAILED.value
    assert first.previous_status == DeliverableStatus.DUE.value
    assert first.strike_id is not None
    assert not second.changed and second.strike_id is None

    strike = await _fetch(session_factory, Strike, first.strike_id)
    assert strike.creator_id == world.creator.creator.id
    assert strike.match_id == claim.match_id
    assert strike.reason == "Low quality"
    assert await _strike_count(session_factory, claim.match_id) == 1


@pytest.mark.asyncio
async def test_concurrent_fail_yields_single_strike(session_factory, world, make_match):
    match, deliverable = await make_match(world.offer.id, world.creator.creator.id)

    async def fail():
        async with session_factory() as session:
            return await fulfillment.apply(session, world.brand.ctx, FailDeliverable(deliverable.id, reason="Off brief"))

    results = await asyncio.gather(*[fail() for _ in range(5)])

    assert sum(1 for r in results if r.changed) == 1
    assert {r.status for r in results} == {DeliverableStatus.FAILED.value}
    assert len([r for r in results if r.strike_id is not None]) == 1
    assert await _strike_count(session_factory, match.id) == 1


@pytest.mark.asyncio
async def test_fail_clears_submission_and_records_review(db_session, session_factory, world, make_match):
    _, deliverable = await make_match(world.offer.id, world.creator.creator.id)

    result = await fulfillment.apply(db_session, world.brand.ctx, FailDeliverable(deliverable.id, reason="  "))

    stored = await _fetch(session_factory, Deliverable, deliverable.id)
    assert stored.status == DeliverableStatus.FAILED.value
    assert stored.failure_reason == fulfillment.DEFAULT_FAIL_REASON
    assert stored.submitted_permalink is None
    assert stored.submitted_at is None
    assert stored.reviewed_by_user_id == world.brand.owner.id

    async with session_factory() as session:
        review = (
            await session.execute(select(DeliverableReview).where(DeliverableReview.deliverable_id == deliverable.id))
        ).scalar_one()
        notification = (
            await session.execute(select(Notification).where(Notification.creator_id == world.creator.creator.id))
        ).scalar_one()
    assert review.action == "FAIL"
    assert review.submitted_permalink == "https://instagram.com/p/abc123"
    assert notification.template == "strike_issued"
    assert notification.status == "SENT"
    assert result.strike_id is not None


@pytest.mark.asyncio
async def test_request_changes_clears_every_submission_field(db_session, session_factory, world, make_match):
    now = utcnow()
    _, deliverable = await make_match(
        world.offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.VERIFIED,
        submitted_permalink="https://instagram.com/reel/xyz",
        submitted_notes="v1",
        submitted_at=now,
        verified_permalink="https://instagram.com/reel/xyz",
        verified_at=now,
        usage_rights_granted_at=now,
        usage_rights_scope="PAID_ADS_12MO",
        reminder_sent_at=now,
    )

    result = await fulfillment.apply(
        db_session, world.brand.ctx, RequestChanges(deliverable.id, reason="Show the label")
    )

    assert result.changed
    assert result.previous_status == DeliverableStatus.VERIFIED.value
    stored = await _fetch(session_factory, Deliverable, deliverable.id)
    assert stored.status == DeliverableStatus.DUE.value
    for name in fulfillment.CLEARED_SUBMISSION:
        assert getattr(stored, name) is None, name
    assert stored.reminder_sent_at is None
    assert stored.failure_reason == "Show the label"
    assert await _strike_count(session_factory, deliverable.match_id) == 0


@pytest.mark.asyncio
async def test_verify_uses_submitted_permalink_and_is_idempotent(db_session, session_factory, world, make_match):
    _, deliverable = await make_match(world.offer.id, world.creator.creator.id)

    first = await fulfillment.apply(db_session, world.brand.ctx, VerifyDeliverable(deliverable.id))
    again = await fulfillment.apply(db_session, world.brand.ctx, VerifyDeliverable(deliverable.id))

    assert first.changed and not again.changed
    stored = await _fetch(session_factory, Deliverable, deliverable.id)
    assert stored.status == DeliverableStatus.VERIFIED.value
    assert stored.verified_permalink == "https://instagram.com/p/abc123"
    assert stored.verified_at is not None


@pytest.mark.asyncio
async def test_verify_without_any_permalink_is_invalid(db_session, world, make_match):
    _, deliverable = await make_match(world.offer.id, world.creator.creator.id, deliverable_status=DeliverableStatus.DUE)

    with pytest.raises(ValidationError) as exc_info:
        await fulfillment.apply(db_session, world.brand.ctx, VerifyDeliverable(deliverable.id))
    assert exc_info.value.code == "permalink_required"


@pytest.mark.asyncio
async def test_verify_requires_granted_usage_rights(db_session, world, make_offer, make_match):
    offer = await make_offer(world.brand.brand.id, usage_rights_required=True, usage_rights_scope="PAID_ADS_12MO")
    _, deliverable = await make_match(offer.id, world.creator.creator.id)

    with pytest.raises(ValidationError) as exc_info:
        await fulfillment.apply(db_session, world.brand.ctx, VerifyDeliverable(deliverable.id))
    assert exc_info.value.code == "usage_rights_missing"


@pytest.mark.asyncio
async def test_fail_after_verification_clears_verified_post(db_session, session_factory, world, make_match):
    now = utcnow()
    match, deliverable = await make_match(
        world.offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.VERIFIED,
        submitted_permalink="https://instagram.com/p/abc123",
        submitted_at=now,
        verified_permalink="https://instagram.com/p/abc123",
        verified_at=now,
        usage_rights_granted_at=now,
    )

    result = await fulfillment.apply(db_session, world.brand.ctx, FailDeliverable(deliverable.id, "post deleted"))

    assert result.changed
    assert result.previous_status == DeliverableStatus.VERIFIED.value
    stored = await _fetch(session_factory, Deliverable, deliverable.id)
    assert stored.status == DeliverableStatus.FAILED.value
    assert stored.failure_reason == "post deleted"
    assert stored.submitted_permalink is None
    assert stored.verified_permalink is None
    assert stored.verified_at is None
    assert stored.usage_rights_granted_at is None
    assert await _strike_count(session_factory, match.id) == 1


@pytest.mark.asyncio
async def test_request_changes_on_failed_is_a_conflict(db_session, world, make_match):
    _, deliverable = await make_match(world.offer.id, world.creator.creator.id, deliverable_status=DeliverableStatus.FAILED)

    with pytest.raises(ConflictError):
        await fulfillment.apply(db_session, world.brand.ctx, RequestChanges(deliverable.id))


@pytest.mark.asyncio
async def test_other_brand_sees_not_found(db_session, world, make_brand, make_match):
    match, deliverable = await make_match(world.offer.id, world.creator.creator.id)
    stranger = await make_brand(name="Other Co")

    with pytest.raises(NotFoundError):
        await fulfillment.apply(db_session, stranger.ctx, FailDeliverable(deliverable.id))
    with pytest.raises(NotFoundError):
        await fulfillment.apply(db_session, stranger.ctx, RejectMatch(match.id))


@pytest.mark.asyncio
async def test_creator_cannot_review(db_session, world, make_match):
    _, deliverable = await make_match(world.offer.id, world.creator.creator.id)

    with pytest.raises(AuthorizationError) as exc_info:
        await fulfillment.apply(db_session, world.creator.ctx, VerifyDeliverable(deliverable.id))
    assert exc_info.value.code == "forbidden_actor"


@pytest.mark.asyncio
async def test_any_brand_member_can_review(db_session, world, make_match):
    member = BrandContext(user_id=world.brand.owner.id, brand_id=world.brand.brand.id, role=MembershipRole.MEMBER)
    _, deliverable = await make_match(world.offer.id, world.creator.creator.id)

    result = await fulfillment.apply(db_session, member, VerifyDeliverable(deliverable.id))
    assert result.changed


@pytest.mark.asyncio
async def test_accept_sets_accepted_at_and_refreshes_due(db_session, session_factory, world, make_match):
    match, deliverable = await make_match(
        world.offer.id,
        world.creator.creator.id,
        status=MatchStatus.PENDING_APPROVAL,
        deliverable_status=DeliverableStatus.DUE,
    )
    now = utcnow() + timedelta(days=2)

    result = await fulfillment.apply(db_session, world.brand.ctx, AcceptMatch(match.id), now=now)

    assert result.changed and result.status == MatchStatus.ACCEPTED.value
    assert result.deliverable_id == deliverable.id
    stored_match = await _fetch(session_factory, Match, match.id)
    stored_deliverable = await _fetch(session_factory, Deliverable, deliverable.id)
    assert as_utc(stored_match.accepted_at) == now
    assert as_utc(stored_deliverable.due_at) == fulfillment.due_at_for(now, world.offer.deadline_days_after_delivery)

    again = await fulfillment.apply(db_session, world.brand.ctx, AcceptMatch(match.id))
    assert not again.changed


@pytest.mark.asyncio
async def test_accept_creates_missing_deliverable(db_session, session_factory, world):
    match = Match(
        offer_id=world.offer.id,
        creator_id=world.creator.creator.id,
        status=MatchStatus.PENDING_APPROVAL.value,
        campaign_code="FRILP-LEGACY",
    )
    db_session.add(match)
    await db_session.commit()

    result = await fulfillment.apply(db_session, world.brand.ctx, AcceptMatch(match.id))

    stored = await _fetch(session_factory, Deliverable, result.deliverable_id)
    assert stored.match_id == match.id
    assert stored.status == DeliverableStatus.DUE.value
    assert stored.expected_type == DeliverableType.REELS.value


@pytest.mark.asyncio
async def test_reject_revokes_and_records_rejection(db_session, session_factory, world, make_match):
    match, _ = await make_match(world.offer.id, world.creator.creator.id)

    result = await fulfillment.apply(db_session, world.brand.ctx, RejectMatch(match.id))
    again = await fulfillment.apply(db_session, world.brand.ctx, RejectMatch(match.id))

    assert result.changed and result.status == MatchStatus.REVOKED.value
    assert not again.changed and again.status == MatchStatus.REVOKED.value
    async with session_factory() as session:
        rejection = await session.get(CreatorOfferRejection, (world.offer.id, world.creator.creator.id))
    assert rejection is not None


@pytest.mark.asyncio
async def test_reject_after_shipping_is_a_conflict(db_session, world, make_match):
    match, _ = await make_match(world.offer.id, world.creator.creator.id)
    shipped = await fulfillment.apply(db_session, world.brand.ctx, MarkShipped(match.id))
    assert shipped.status == MatchStatus.CLAIMED.value

    with pytest.raises(ConflictError):
        await fulfillment.apply(db_session, world.brand.ctx, RejectMatch(match.id))


@pytest.mark.asyncio
async def test_creator_can_cancel_own_match(db_session, world, make_match, make_creator):
    match, _ = await make_match(world.offer.id, world.creator.creator.id)
    other = await make_creator()

    with pytest.raises(NotFoundError):
        await fulfillment.apply(db_session, other.ctx, CancelMatch(match.id))

    result = await fulfillment.apply(db_session, world.creator.ctx, CancelMatch(match.id))
    assert result.status == MatchStatus.CANCELED.value

    with pytest.raises(ConflictError):
        await fulfillment.apply(db_session, world.brand.ctx, MarkShipped(match.id))


@pytest.mark.asyncio
async def test_submit_moves_due_to_submitted(db_session, session_factory, world, make_offer, make_match):
    offer = await make_offer(world.brand.brand.id, usage_rights_required=True, usage_rights_scope="ORGANIC_ONLY")
    match, deliverable = await make_match(offer.id, world.creator.creator.id, deliverable_status=DeliverableStatus.DUE)

    result = await fulfillment.apply(
        db_session,
        world.creator.ctx,
        SubmitDeliverable(match.id, " https://instagram.com/reel/new ", notes="final cut", grant_usage_rights=True),
    )

    assert result.changed and result.status == DeliverableStatus.SUBMITTED.value
    stored = await _fetch(session_factory, Deliverable, deliverable.id)
    assert stored.submitted_permalink == "https://instagram.com/reel/new"
    assert stored.submitted_notes == "final cut"
    assert stored.usage_rights_scope == "ORGANIC_ONLY"
    assert stored.usage_rights_granted_at is not None

    verified = await fulfillment.apply(db_session, world.brand.ctx, VerifyDeliverable(deliverable.id))
    assert verified.changed


@pytest.mark.asyncio
async def test_submit_needs_accepted_match_and_permalink(db_session, world, make_match):
    match, _ = await make_match(
        world.offer.id,
        world.creator.creator.id,
        status=MatchStatus.PENDING_APPROVAL,
        deliverable_status=DeliverableStatus.DUE,
    )

    with pytest.raises(ConflictError):
        await fulfillment.apply(db_session, world.creator.ctx, SubmitDeliverable(match.id, "https://instagram.com/p/1"))
    with pytest.raises(ValidationError):
        await fulfillment.apply(db_session, world.creator.ctx, SubmitDeliverable(match.id, "   "))


@pytest.mark.asyncio
async def test_expire_is_reserved_for_scheduled_jobs(db_session, session_factory, world, make_match):
    match, deliverable = await make_match(world.offer.id, world.creator.creator.id, deliverable_status=DeliverableStatus.DUE)

    with pytest.raises(AuthorizationError):
        await fulfillment.apply(db_session, world.brand.ctx, ExpireDeliverable(deliverable.id))

    result = await fulfillment.apply(db_session, SystemContext(job="verify"), ExpireDeliverable(deliverable.id))
    assert result.changed and result.strike_id is not None

    stored = await _fetch(session_factory, Deliverable, deliverable.id)
    assert stored.failure_reason == fulfillment.MISSED_DEADLINE_REASON
    assert stored.reviewed_by_user_id is None


@pytest.mark.asyncio
async def test_expire_skips_submitted_work(db_session, world, make_match):
    _, deliverable = await make_match(world.offer.id, world.creator.creator.id)

    result = await fulfillment.apply(db_session, SystemContext(job="verify"), ExpireDeliverable(deliverable.id))
    assert not result.changed
    assert result.status == DeliverableStatus.SUBMITTED.value


@pytest.mark.asyncio
async def test_expire_leaves_deliverable_of_closed_match_alone(db_session, session_factory, world, make_match):
    match, deliverable = await make_match(
        world.offer.id,
        world.creator.creator.id,
        deliverable_status=DeliverableStatus.DUE,
        due_at=utcnow() - timedelta(days=1),
    )
    await fulfillment.apply(db_session, world.creator.ctx, CancelMatch(match.id))

    result = await fulfillment.apply(db_session, SystemContext(job="verify"), ExpireDeliverable(deliverable.id))

    assert not result.changed
    assert result.status == DeliverableStatus.DUE.value
    stored = await _fetch(session_factory, Deliverable, deliverable.id)
    assert stored.status == DeliverableStatus.DUE.value
    assert await _strike_count(session_factory, match.id) == 0


@pytest.mark.asyncio
async def test_unknown_command_is_rejected(db_session, world):
    with pytest.raises(ValidationError):
        await fulfillment.apply(db_session, world.brand.ctx, object())
