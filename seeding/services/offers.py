# seeding/services/offers.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.config import settings
from seeding.core.exceptions import (
    ConflictError,
    NotFoundError,
    PaymentRequiredError,
    ValidationError,
)
from seeding.core.logging import get_structlog_logger
from seeding.db.base import utcnow
from seeding.db.session import atomic
from seeding.db.statements import insert_for
from seeding.models import Brand, Creator, CreatorOfferRejection, Match, Offer, OfferProduct
from seeding.models.enums import LIVE_MATCH_STATUSES, MatchStatus, OfferStatus, SubjectType
from seeding.services import billing, eligibility, notifications, rate_limit
from seeding.services.auth import BrandContext, CreatorContext
from seeding.services.campaign_code import generate_campaign_code
from seeding.services.eligibility import AcceptanceDecision
from seeding.services.fulfillment import ensure_deliverable

logger = get_structlog_logger(__name__)

CAMPAIGN_CODE_ATTEMPTS = 5

# Columns copied verbatim when an offer is duplicated
_OFFER_COPY_FIELDS = (
    "brand_id",
    "title",
    "template",
    "countries_allowed",
    "max_claims",
    "deadline_days_after_delivery",
    "deliverable_type",
    "requires_caption_code",
    "usage_rights_required",
    "usage_rights_scope",
    "acceptance_followers_threshold",
    "acceptance_above_threshold_auto_accept",
    "extra",
)
_PRODUCT_COPY_FIELDS = ("shopify_product_id", "shopify_variant_id", "title", "quantity")


@dataclass(frozen=True)
class DuplicateResult:
    offer_id: uuid.UUID
    source_offer_id: uuid.UUID
    product_ids: List[uuid.UUID] = field(default_factory=list)


@dataclass(frozen=True)
class ClaimResult:
    match_id: uuid.UUID
    status: str
    campaign_code: str
    auto_accepted: bool
    deliverable_id: Optional[uuid.UUID] = None


def _validate_countries(countries: Optional[Sequence[str]]) -> List[str]:
    cleaned = [c.strip().upper() for c in countries or [] if c and c.strip()]
    if not cleaned:
        raise ValidationError("At least one country must be allowed", code="countries_required")
    return cleaned


async def _owned_offer(session: AsyncSession, ctx: BrandContext, offer_id: uuid.UUID, *, for_update: bool = False) -> Offer:
    stmt = select(Offer).where(Offer.id == offer_id, Offer.brand_id == ctx.brand_id)
    if for_update:
        stmt = stmt.with_for_update()
    offer = (await session.execute(stmt)).scalar_one_or_none()
    if offer is None:
        raise NotFoundError("Offer not found")
    return offer


async def create_offer(
    session: AsyncSession,
    ctx: BrandContext,
    data: Dict[str, Any],
    products: Sequence[Dict[str, Any]] = (),
    *,
    now: Optional[datetime] = None,
) -> uuid.UUID:
    """Create a DRAFT offer (or PUBLISHED when asked) with its products."""
    now = now or utcnow()
    countries = _validate_countries(data.get("countries_allowed"))
    status = data.get("status", OfferStatus.DRAFT.value)
    offer_id = uuid.uuid4()

    values = {k: v for k, v in data.items() if k in _OFFER_COPY_FIELDS and k != "brand_id"}
    values.update(
        id=offer_id,
        brand_id=ctx.brand_id,
        status=status,
        countries_allowed=countries,
        published_at=now if status == OfferStatus.PUBLISHED.value else None,
        created_at=now,
        updated_at=now,
    )

    async with atomic(session):
        await session.execute(insert(Offer).values(**values))
        if products:
            rows = [
                {
                    "id": uuid.uuid4(),
                    "offer_id": offer_id,
                    "created_at": now,
                    **{k: p[k] for k in _PRODUCT_COPY_FIELDS if k in p},
                }
                for p in products
            ]
            await session.execute(insert(OfferProduct), rows)

    logger.info("offer.created", offer_id=str(offer_id), brand_id=str(ctx.brand_id), status=status)
    return offer_id


async def set_offer_status(
    session: AsyncSession,
    ctx: BrandContext,
    offer_id: uuid.UUID,
    status: OfferStatus,
    *,
    now: Optional[datetime] = None,
) -> str:
    now = now or utcnow()
    async with atomic(session):
        offer = await _owned_offer(session, ctx, offer_id, for_update=True)
        if status == OfferStatus.PUBLISHED:
            _validate_countries(offer.countries_allowed)
        values: Dict[str, Any] = {"status": status.value, "updated_at": now}
        if status == OfferStatus.PUBLISHED and offer.published_at is None:
            values["published_at"] = now
        await session.execute(
            update(Offer).where(Offer.id == offer.id).values(**values).execution_options(synchronize_session=False)
        )

    logger.info("offer.status_changed", offer_id=str(offer_id), status=status.value)
    return status.value


async def duplicate_offer(
    session: AsyncSession,
    ctx: BrandContext,
    offer_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> DuplicateResult:
    """
    Deep-copy an offer and its products under fresh ids.

    The copy is PUBLISHED with new timestamps. Matches and deliverables stay
    with the original.
    """
    now = now or utcnow()
    new_offer_id = uuid.uuid4()

    async with atomic(session):
        source = await _owned_offer(session, ctx, offer_id)
        products = (
            await session.execute(
                select(OfferProduct).where(OfferProduct.offer_id == source.id).order_by(OfferProduct.created_at)
            )
        ).scalars().all()

        values = {name: getattr(source, name) for name in _OFFER_COPY_FIELDS}
        values.update(
            id=new_offer_id,
            status=OfferStatus.PUBLISHED.value,
            published_at=now,
            created_at=now,
            updated_at=now,
        )
        await session.execute(insert(Offer).values(**values))

        product_rows = [
            {
                "id": uuid.uuid4(),
                "offer_id": new_offer_id,
                "created_at": now,
                **{name: getattr(product, name) for name in _PRODUCT_COPY_FIELDS},
            }
            for product in products
        ]
        if product_rows:
            await session.execute(insert(OfferProduct), product_rows)

    logger.info(
        "offer.duplicated",
        source_offer_id=str(offer_id),
        offer_id=str(new_offer_id),
        products=len(product_rows),
    )
    return DuplicateResult(
        offer_id=new_offer_id,
        source_offer_id=offer_id,
        product_ids=[row["id"] for row in product_rows],
    )


async def _enforce_claim_rate_limits(session: AsyncSession, ctx: CreatorContext, now: datetime) -> None:
    await rate_limit.enforce(
        session,
        f"claim:creator:{ctx.creator_id}",
        settings.rate_limit_claims_per_creator_per_minute,
        60,
        now=now,
    )
    if ctx.ip_key:
        await rate_limit.enforce(
            session,
            f"claim:{ctx.ip_key}",
            settings.rate_limit_claims_per_ip_per_minute,
            60,
            now=now,
        )


async def claim_offer(
    session: AsyncSession,
    ctx: CreatorContext,
    offer_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> ClaimResult:
    """Create a Match for the calling creator against a published offer."""
    now = now or utcnow()

    if settings.claim_requires_subscription and not await billing.has_active_subscription(
        session, SubjectType.CREATOR, ctx.creator_id, now=now
    ):
        raise PaymentRequiredError()

    offer = (await session.execute(select(Offer).where(Offer.id == offer_id))).scalar_one_or_none()
    if offer is None:
        raise NotFoundError("Offer not found")
    if offer.status != OfferStatus.PUBLISHED.value:
        raise ValidationError("Offer is not open for claims", code="offer_not_published")

    rejected = (
        await session.execute(
            select(CreatorOfferRejection.offer_id).where(
                CreatorOfferRejection.offer_id == offer.id,
                CreatorOfferRejection.creator_id == ctx.creator_id,
            )
        )
    ).first()
    if rejected is not None:
        raise ConflictError("You were not selected for this offer", code="offer_rejected")

    await _enforce_claim_rate_limits(session, ctx, now)

    creator = (await session.execute(select(Creator).where(Creator.id == ctx.creator_id))).scalar_one_or_none()
    if creator is None:
        raise NotFoundError("Creator not found")
    brand = (await session.execute(select(Brand).where(Brand.id == offer.brand_id))).scalar_one()

    decision = eligibility.check_claim_eligibility(
        creator=creator,
        offer=offer,
        brand=brand,
        active_strikes=await eligibility.active_strike_count(session, creator.id),
    )
    auto_accept = decision == AcceptanceDecision.AUTO_ACCEPT
    status = MatchStatus.ACCEPTED.value if auto_accept else MatchStatus.PENDING_APPROVAL.value

    match_id = None
    campaign_code = None
    deliverable_id = None
    notification_ids = []

    async with atomic(session):
        # A no-op write takes the offer's row lock; concurrent claims queue here
        locked = (
            await session.execute(
                update(Offer)
                .where(Offer.id == offer.id)
                .values(max_claims=Offer.max_claims)
                .returning(Offer.status, Offer.max_claims)
                .execution_options(synchronize_session=False)
            )
        ).one()
        if locked.status != OfferStatus.PUBLISHED.value:
            raise ValidationError("Offer is not open for claims", code="offer_not_published")

        if await _live_match_exists(session, offer.id, creator.id):
            raise ConflictError("You already claimed this offer", code="already_claimed")

        live_claims = (
            await session.execute(
                select(func.count(Match.id)).where(
                    Match.offer_id == offer.id, Match.status.in_(LIVE_MATCH_STATUSES)
                )
            )
        ).scalar_one()
        if live_claims >= locked.max_claims:
            raise ConflictError("This offer has no claims left", code="max_claims")

        for _ in range(CAMPAIGN_CODE_ATTEMPTS):
            campaign_code = generate_campaign_code()
            stmt = (
                insert_for(session, Match)
                .values(
                    id=uuid.uuid4(),
                    offer_id=offer.id,
                    creator_id=creator.id,
                    status=status,
                    campaign_code=campaign_code,
                    accepted_at=now if auto_accept else None,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing()
                .returning(Match.id)
            )
            match_id = (await session.execute(stmt)).scalar_one_or_none()
            if match_id is not None:
                break
            # Either the code collided or a concurrent claim won the pair
            if await _live_match_exists(session, offer.id, creator.id):
                raise ConflictError("You already claimed this offer", code="already_claimed")
        else:
            raise ConflictError("Could not allocate a campaign code, try again", code="campaign_code_exhausted")

        deliverable_id = await ensure_deliverable(
            session,
            match_id=match_id,
            expected_type=offer.deliverable_type,
            deadline_days_after_delivery=offer.deadline_days_after_delivery,
            accepted_at=now,
        )
        if auto_accept:
            notification_id = await notifications.notify_creator(
                session,
                creator.id,
                "creator_approved",
                {"offer_title": offer.title, "campaign_code": campaign_code},
            )
            if notification_id is not None:
                notification_ids.append(notification_id)

    logger.info(
        "offer.claimed",
        offer_id=str(offer.id),
        creator_id=str(creator.id),
        match_id=str(match_id),
        status=status,
    )
    if notification_ids:
        await notifications.dispatch(session, notification_ids)

    return ClaimResult(
        match_id=match_id,
        status=status,
        campaign_code=campaign_code,
        auto_accepted=auto_accept,
        deliverable_id=deliverable_id,
    )


async def _live_match_exists(session: AsyncSession, offer_id: uuid.UUID, creator_id: uuid.UUID) -> bool:
    row = (
        await session.execute(
            select(Match.id).where(
                Match.offer_id == offer_id,
                Match.creator_id == creator_id,
                Match.status.in_(LIVE_MATCH_STATUSES),
            )
        )
    ).first()
    return row is not None
