# seeding/services/eligibility.py
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.config import settings
from seeding.core.exceptions import AuthorizationError
from seeding.models import Deliverable, Match, Offer, Strike
from seeding.models.enums import LIVE_MATCH_STATUSES, DeliverableStatus


class AcceptanceDecision(str, enum.Enum):
    AUTO_ACCEPT = "AUTO_ACCEPT"
    PENDING_APPROVAL = "PENDING_APPROVAL"


@dataclass(frozen=True)
class AcceptancePolicy:
    followers_threshold: int
    auto_accept_above_threshold: bool


def acceptance_decision(
    threshold: int,
    auto_accept_above_threshold: bool,
    followers_count: Optional[int],
) -> AcceptanceDecision:
    if followers_count is None:
        return AcceptanceDecision.PENDING_APPROVAL
    if auto_accept_above_threshold and followers_count >= threshold:
        return AcceptanceDecision.AUTO_ACCEPT
    return AcceptanceDecision.PENDING_APPROVAL


def resolve_acceptance_policy(offer, brand) -> AcceptancePolicy:
    """Offer-level settings override the brand defaults field by field."""
    threshold = offer.acceptance_followers_threshold
    if threshold is None:
        threshold = brand.acceptance_followers_threshold
    auto_accept = offer.acceptance_above_threshold_auto_accept
    if auto_accept is None:
        auto_accept = brand.acceptance_above_threshold_auto_accept
    return AcceptancePolicy(followers_threshold=int(threshold), auto_accept_above_threshold=bool(auto_accept))


def is_nano_creator(
    followers_count: Optional[int],
    min_followers: Optional[int] = None,
    max_followers: Optional[int] = None,
) -> bool:
    # Unknown follower counts are not held against the creator
    if followers_count is None:
        return True
    lo = settings.creator_min_followers if min_followers is None else min_followers
    hi = settings.creator_max_followers if max_followers is None else max_followers
    return lo <= followers_count <= hi


def is_strike_blocked(active_strikes: int, strike_limit: Optional[int] = None) -> bool:
    limit = settings.strike_limit if strike_limit is None else strike_limit
    return active_strikes >= limit


def country_allowed(country: Optional[str], countries_allowed: Iterable[str]) -> bool:
    allowed = {c.upper() for c in countries_allowed or []}
    return bool(country) and country.upper() in allowed


def check_claim_eligibility(
    *,
    creator,
    offer,
    brand,
    active_strikes: int,
    strike_limit: Optional[int] = None,
) -> AcceptanceDecision:
    """Gate a claim and decide whether it is accepted on the spot."""
    if is_strike_blocked(active_strikes, strike_limit):
        raise AuthorizationError(
            "Too many active strikes to claim new offers",
            code="strike_blocked",
            details={"active_strikes": active_strikes},
        )
    if not country_allowed(creator.country, offer.countries_allowed):
        raise AuthorizationError("Offer is not available in your country", code="country_not_allowed")
    if not is_nano_creator(creator.followers_count):
        raise AuthorizationError("Offer is limited to nano creators", code="not_nano")

    policy = resolve_acceptance_policy(offer, brand)
    return acceptance_decision(
        policy.followers_threshold,
        policy.auto_accept_above_threshold,
        creator.followers_count,
    )


async def active_strike_count(session: AsyncSession, creator_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count(Strike.id)).where(Strike.creator_id == creator_id, Strike.forgiven_at.is_(None))
    )
    return int(result.scalar_one())


def verified_deal_exists(brand_id: uuid.UUID, creator_id: uuid.UUID):
    """EXISTS clause: a VERIFIED deliverable on a live match between the two parties."""
    return (
        select(Deliverable.id)
        .join(Match, Match.id == Deliverable.match_id)
        .join(Offer, Offer.id == Match.offer_id)
        .where(
            Offer.brand_id == brand_id,
            Match.creator_id == creator_id,
            Match.status.in_(LIVE_MATCH_STATUSES),
            Deliverable.status == DeliverableStatus.VERIFIED.value,
        )
        .exists()
    )


async def favorite_eligible(session: AsyncSession, brand_id: uuid.UUID, creator_id: uuid.UUID) -> bool:
    result = await session.execute(select(verified_deal_exists(brand_id, creator_id)))
    return bool(result.scalar())
