# seeding/services/favorites.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Uuid, delete, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.exceptions import ConflictError
from seeding.core.logging import get_structlog_logger
from seeding.db.base import utcnow
from seeding.db.session import atomic
from seeding.db.statements import insert_for
from seeding.models import BrandCreatorFavorite, CreatorBrandFavorite
from seeding.services.auth import BrandContext, CreatorContext
from seeding.services.eligibility import verified_deal_exists

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class FavoriteResult:
    favorited: bool
    created: bool = False
    removed: bool = False


async def _add(session: AsyncSession, model, owner_col: str, owner_id, target_col: str, target_id, brand_id, creator_id, now: datetime) -> FavoriteResult:
    """
    Insert the favorite only if a verified deal exists, in one statement.

    The eligibility check and the insert share a single INSERT ... SELECT
    ... WHERE EXISTS, so a deliverable un-verified concurrently cannot slip
    between them.
    """
    owner = getattr(model, owner_col)
    target = getattr(model, target_col)
    source = select(
        literal(owner_id, Uuid()),
        literal(target_id, Uuid()),
        literal(now, DateTime(timezone=True)),
    ).where(verified_deal_exists(brand_id, creator_id))

    stmt = (
        insert_for(session, model)
        .from_select([owner_col, target_col, "created_at"], source)
        .on_conflict_do_nothing(index_elements=[owner, target])
        .returning(owner)
    )

    async with atomic(session):
        inserted = (await session.execute(stmt)).first()
        if inserted is None:
            existing = (
                await session.execute(select(owner).where(owner == owner_id, target == target_id))
            ).first()
            if existing is None:
                raise ConflictError(
                    "Favorites need at least one verified deliverable together",
                    code="no_verified_deal",
                )

    return FavoriteResult(favorited=True, created=inserted is not None)


async def _remove(session: AsyncSession, model, owner_col: str, owner_id, target_col: str, target_id) -> FavoriteResult:
    owner = getattr(model, owner_col)
    target = getattr(model, target_col)
    async with atomic(session):
        result = await session.execute(delete(model).where(owner == owner_id, target == target_id))
    return FavoriteResult(favorited=False, removed=result.rowcount > 0)


async def set_creator_favorite(
    session: AsyncSession,
    ctx: BrandContext,
    creator_id: uuid.UUID,
    favorite: bool,
    *,
    now: Optional[datetime] = None,
) -> FavoriteResult:
    """Brand bookmarks (or un-bookmarks) a creator."""
    if favorite:
        result = await _add(
            session, BrandCreatorFavorite, "brand_id", ctx.brand_id, "creator_id", creator_id,
            ctx.brand_id, creator_id, now or utcnow(),
        )
    else:
        result = await _remove(session, BrandCreatorFavorite, "brand_id", ctx.brand_id, "creator_id", creator_id)
    logger.info(
        "favorite.brand_creator",
        brand_id=str(ctx.brand_id),
        creator_id=str(creator_id),
        favorited=result.favorited,
        created=result.created,
    )
    return result


async def set_brand_favorite(
    session: AsyncSession,
    ctx: CreatorContext,
    brand_id: uuid.UUID,
    favorite: bool,
    *,
    now: Optional[datetime] = None,
) -> FavoriteResult:
    """Creator bookmarks (or un-bookmarks) a brand."""
    if favorite:
        result = await _add(
            session, CreatorBrandFavorite, "creator_id", ctx.creator_id, "brand_id", brand_id,
            brand_id, ctx.creator_id, now or utcnow(),
        )
    else:
        result = await _remove(session, CreatorBrandFavorite, "creator_id", ctx.creator_id, "brand_id", brand_id)
    logger.info(
        "favorite.creator_brand",
        creator_id=str(ctx.creator_id),
        brand_id=str(brand_id),
        favorited=result.favorited,
        created=result.created,
    )
    return result


async def list_favorite_creators(session: AsyncSession, ctx: BrandContext) -> List[uuid.UUID]:
    rows = await session.execute(
        select(BrandCreatorFavorite.creator_id)
        .where(BrandCreatorFavorite.brand_id == ctx.brand_id)
        .order_by(BrandCreatorFavorite.created_at.desc())
    )
    return list(rows.scalars().all())


async def list_favorite_brands(session: AsyncSession, ctx: CreatorContext) -> List[uuid.UUID]:
    rows = await session.execute(
        select(CreatorBrandFavorite.brand_id)
        .where(CreatorBrandFavorite.creator_id == ctx.creator_id)
        .order_by(CreatorBrandFavorite.created_at.desc())
    )
    return list(rows.scalars().all())
