# seeding/services/accounts.py
from __future__ import annotations

from typing import Dict

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from seeding.core.logging import get_structlog_logger
from seeding.db.session import atomic
from seeding.models import (
    AuditLog,
    BillingSubscription,
    Brand,
    BrandCreatorFavorite,
    BrandMembership,
    CreatorBrandFavorite,
    CreatorOfferRejection,
    Deliverable,
    DeliverableReview,
    Match,
    Notification,
    Offer,
    OfferProduct,
    Strike,
    User,
)
from seeding.models.enums import SubjectType
from seeding.services.auth import BrandContext

logger = get_structlog_logger(__name__)


def confirmation_phrase(brand_name: str) -> str:
    return f"DELETE {brand_name}"


async def delete_brand(session: AsyncSession, ctx: BrandContext, confirm: str) -> Dict[str, int]:
    """
    Remove a brand and everything hanging off it in one transaction.

    Strikes survive with their match reference cleared so a creator's
    history outlives the brand. Returns deleted row counts per table.
    """
    if not ctx.is_owner:
        raise AuthorizationError("Only the brand owner can delete the brand", code="owner_required")

    brand = (await session.execute(select(Brand.id, Brand.name).where(Brand.id == ctx.brand_id))).one_or_none()
    if brand is None:
        raise NotFoundError("Brand not found")
    if (confirm or "").strip() != confirmation_phrase(brand.name):
        raise ValidationError(
            "Confirmation text does not match",
            code="confirmation_mismatch",
            details={"expected": confirmation_phrase(brand.name)},
        )

    offer_ids = select(Offer.id).where(Offer.brand_id == brand.id)
    match_ids = select(Match.id).where(Match.offer_id.in_(offer_ids))
    deliverable_ids = select(Deliverable.id).where(Deliverable.match_id.in_(match_ids))

    # Children before parents
    steps = [
        ("strikes_detached", update(Strike).where(Strike.match_id.in_(match_ids)).values(match_id=None)),
        ("deliverable_reviews", delete(DeliverableReview).where(DeliverableReview.deliverable_id.in_(deliverable_ids))),
        ("deliverables", delete(Deliverable).where(Deliverable.match_id.in_(match_ids))),
        ("matches", delete(Match).where(Match.offer_id.in_(offer_ids))),
        ("creator_offer_rejections", delete(CreatorOfferRejection).where(CreatorOfferRejection.offer_id.in_(offer_ids))),
        ("offer_products", delete(OfferProduct).where(OfferProduct.offer_id.in_(offer_ids))),
        ("offers", delete(Offer).where(Offer.brand_id == brand.id)),
        ("brand_creator_favorites", delete(BrandCreatorFavorite).where(BrandCreatorFavorite.brand_id == brand.id)),
        ("creator_brand_favorites", delete(CreatorBrandFavorite).where(CreatorBrandFavorite.brand_id == brand.id)),
        ("brand_memberships", delete(BrandMembership).where(BrandMembership.brand_id == brand.id)),
        (
            "billing_subscriptions",
            delete(BillingSubscription).where(
                BillingSubscription.subject_type == SubjectType.BRAND.value,
                BillingSubscription.subject_id == brand.id,
            ),
        ),
        ("audit_logs", delete(AuditLog).where(AuditLog.brand_id == brand.id)),
        ("notifications", delete(Notification).where(Notification.brand_id == brand.id)),
        ("users_detached", update(User).where(User.active_brand_id == brand.id).values(active_brand_id=None)),
        ("brands", delete(Brand).where(Brand.id == brand.id)),
    ]

    counts: Dict[str, int] = {}
    async with atomic(session):
        for name, stmt in steps:
            result = await session.execute(stmt.execution_options(synchronize_session=False))
            counts[name] = result.rowcount

    logger.info("brand.deleted", brand_id=str(brand.id), user_id=str(ctx.user_id), counts=counts)
    return counts
