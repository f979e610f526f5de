# seeding/routes/brand.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.exceptions import NotFoundError
from seeding.db.session import get_session
from seeding.schemas.account import BrandDeleteIn, BrandDeleteOut, FavoriteIn, FavoriteListOut, FavoriteOut
from seeding.schemas.fulfillment import ReasonIn, TransitionOut, VerifyIn
from seeding.schemas.offer import OfferIn, OfferOut, OfferStatusIn
from seeding.services import accounts, favorites, fulfillment, offers
from seeding.services.auth import BrandContext, get_brand_context

router = APIRouter(prefix="/brand", tags=["brand"])


def _transition_out(result: fulfillment.TransitionResult) -> TransitionOut:
    return TransitionOut(
        entity=result.entity,
        id=result.id,
        status=result.status,
        changed=result.changed,
        previous_status=result.previous_status,
        strike_id=result.strike_id,
        deliverable_id=result.deliverable_id,
    )


@router.post("/offers", response_model=OfferOut, status_code=201)
async def create_offer(
    body: OfferIn,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    data = body.model_dump(mode="json", exclude={"products"})
    products = [p.model_dump() for p in body.products]
    offer_id = await offers.create_offer(session, ctx, data, products)
    return OfferOut(offer_id=offer_id, status=body.status.value)


@router.post("/offers/{offer_id}/status", response_model=OfferOut)
async def set_offer_status(
    offer_id: UUID,
    body: OfferStatusIn,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    new_status = await offers.set_offer_status(session, ctx, offer_id, body.status)
    return OfferOut(offer_id=offer_id, status=new_status)


@router.post("/offers/{offer_id}/duplicate", response_model=OfferOut, status_code=201)
async def duplicate_offer(
    offer_id: UUID,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    result = await offers.duplicate_offer(session, ctx, offer_id)
    return OfferOut(
        offer_id=result.offer_id,
        status="PUBLISHED",
        source_offer_id=result.source_offer_id,
        product_ids=result.product_ids,
    )


_MATCH_COMMANDS = {
    "approve": fulfillment.AcceptMatch,
    "ship": fulfillment.MarkShipped,
    "reject": fulfillment.RejectMatch,
    "cancel": fulfillment.CancelMatch,
}


@router.post("/matches/{match_id}/{action}", response_model=TransitionOut)
async def review_match(
    match_id: UUID,
    action: str,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    command_cls = _MATCH_COMMANDS.get(action)
    if command_cls is None:
        raise NotFoundError("Unknown action")
    result = await fulfillment.apply(session, ctx, command_cls(match_id=match_id))
    return _transition_out(result)


@router.post("/deliverables/{deliverable_id}/verify", response_model=TransitionOut)
async def verify_deliverable(
    deliverable_id: UUID,
    body: VerifyIn,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    command = fulfillment.VerifyDeliverable(
        deliverable_id=deliverable_id,
        permalink=str(body.permalink) if body.permalink else None,
    )
    return _transition_out(await fulfillment.apply(session, ctx, command))


@router.post("/deliverables/{deliverable_id}/fail", response_model=TransitionOut)
async def fail_deliverable(
    deliverable_id: UUID,
    body: ReasonIn,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    command = fulfillment.FailDeliverable(deliverable_id=deliverable_id, reason=body.reason)
    return _transition_out(await fulfillment.apply(session, ctx, command))


@router.post("/deliverables/{deliverable_id}/request-changes", response_model=TransitionOut)
async def request_changes(
    deliverable_id: UUID,
    body: ReasonIn,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    command = fulfillment.RequestChanges(deliverable_id=deliverable_id, reason=body.reason)
    return _transition_out(await fulfillment.apply(session, ctx, command))


@router.get("/favorites/creators", response_model=FavoriteListOut)
async def list_favorite_creators(
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    return FavoriteListOut(ids=await favorites.list_favorite_creators(session, ctx))


@router.post("/favorites/creators", response_model=FavoriteOut)
async def favorite_creator(
    body: FavoriteIn,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    result = await favorites.set_creator_favorite(session, ctx, body.target_id, body.favorite)
    return FavoriteOut(favorited=result.favorited, created=result.created, removed=result.removed)


@router.post("/delete", response_model=BrandDeleteOut)
async def delete_brand(
    body: BrandDeleteIn,
    ctx: BrandContext = Depends(get_brand_context),
    session: AsyncSession = Depends(get_session),
):
    return BrandDeleteOut(deleted=await accounts.delete_brand(session, ctx, body.confirm))
