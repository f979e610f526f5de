# seeding/routes/creator.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.db.session import get_session
from seeding.schemas.account import FavoriteIn, FavoriteListOut, FavoriteOut
from seeding.schemas.fulfillment import ClaimOut, SubmitIn, TransitionOut
from seeding.services import favorites, fulfillment, offers
from seeding.services.auth import CreatorContext, get_creator_context

router = APIRouter(prefix="/creator", tags=["creator"])


@router.post("/offers/{offer_id}/claim", response_model=ClaimOut, status_code=201)
async def claim_offer(
    offer_id: UUID,
    ctx: CreatorContext = Depends(get_creator_context),
    session: AsyncSession = Depends(get_session),
):
    result = await offers.claim_offer(session, ctx, offer_id)
    return ClaimOut(
        match_id=result.match_id,
        status=result.status,
        campaign_code=result.campaign_code,
        auto_accepted=result.auto_accepted,
        deliverable_id=result.deliverable_id,
    )


@router.post("/matches/{match_id}/submit", response_model=TransitionOut)
async def submit_deliverable(
    match_id: UUID,
    body: SubmitIn,
    ctx: CreatorContext = Depends(get_creator_context),
    session: AsyncSession = Depends(get_session),
):
    command = fulfillment.SubmitDeliverable(
        match_id=match_id,
        permalink=str(body.permalink),
        notes=body.notes,
        grant_usage_rights=body.grant_usage_rights,
    )
    result = await fulfillment.apply(session, ctx, command)
    return TransitionOut(
        entity=result.entity,
        id=result.id,
        status=result.status,
        changed=result.changed,
        previous_status=result.previous_status,
        deliverable_id=result.deliverable_id,
    )


@router.post("/matches/{match_id}/cancel", response_model=TransitionOut)
async def cancel_match(
    match_id: UUID,
    ctx: CreatorContext = Depends(get_creator_context),
    session: AsyncSession = Depends(get_session),
):
    result = await fulfillment.apply(session, ctx, fulfillment.CancelMatch(match_id=match_id))
    return TransitionOut(
        entity=result.entity,
        id=result.id,
        status=result.status,
        changed=result.changed,
        previous_status=result.previous_status,
    )


@router.get("/favorites/brands", response_model=FavoriteListOut)
async def list_favorite_brands(
    ctx: CreatorContext = Depends(get_creator_context),
    session: AsyncSession = Depends(get_session),
):
    return FavoriteListOut(ids=await favorites.list_favorite_brands(session, ctx))


@router.post("/favorites/brands", response_model=FavoriteOut)
async def favorite_brand(
    body: FavoriteIn,
    ctx: CreatorContext = Depends(get_creator_context),
    session: AsyncSession = Depends(get_session),
):
    result = await favorites.set_brand_favorite(session, ctx, body.target_id, body.favorite)
    return FavoriteOut(favorited=result.favorited, created=result.created, removed=result.removed)
