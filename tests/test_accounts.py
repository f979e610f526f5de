# tests/test_accounts.py
import pytest
from sqlalchemy import func, select

from seeding.core.exceptions import AuthorizationError, ValidationError
from seeding.models import Brand, Creator, Deliverable, Match, Offer, Strike, User
from seeding.models.enums import DeliverableStatus, MembershipRole
from seeding.services import accounts, favorites, fulfillment
from seeding.services.auth import BrandContext


async def _count(session_factory, model, *criteria):
    async with session_factory() as session:
        stmt = select(func.count()).select_from(model)
        if criteria:
            stmt = stmt.where(*criteria)
        return (await session.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_delete_brand_removes_its_graph(db_session, session_factory, world, make_offer, make_match, make_brand):
    survivor = await make_brand(name="Survivor Co")
    survivor_offer = await make_offer(survivor.brand.id)
    kit_offer = await make_offer(world.brand.brand.id, products=2)
    _, failed = await make_match(world.offer.id, world.creator.creator.id)
    await fulfillment.apply(db_session, world.brand.ctx, fulfillment.FailDeliverable(failed.id))
    await make_match(
        kit_offer.id, world.creator.creator.id, deliverable_status=DeliverableStatus.VERIFIED
    )
    await favorites.set_creator_favorite(db_session, world.brand.ctx, world.creator.creator.id, True)
    await favorites.set_brand_favorite(db_session, world.creator.ctx, world.brand.brand.id, True)

    counts = await accounts.delete_brand(db_session, world.brand.ctx, "DELETE Acme Naturals")

    assert counts["brands"] == 1
    assert counts["offers"] == 2
    assert counts["offer_products"] == 2
    assert counts["matches"] == 2
    assert counts["deliverables"] == 2
    assert counts["strikes_detached"] == 1
    assert counts["brand_creator_favorites"] == 1
    assert counts["creator_brand_favorites"] == 1

    assert await _count(session_factory, Brand, Brand.id == world.brand.brand.id) == 0
    assert await _count(session_factory, Offer, Offer.brand_id == world.brand.brand.id) == 0
    assert await _count(session_factory, Match) == 0
    assert await _count(session_factory, Deliverable) == 0
    assert await _count(session_factory, Offer, Offer.id == survivor_offer.id) == 1
    # Creator history and accounts outlive the brand
    assert await _count(session_factory, Strike, Strike.creator_id == world.creator.creator.id) == 1
    assert await _count(session_factory, Creator) == 1
    async with session_factory() as session:
        owner = await session.get(User, world.brand.owner.id)
    assert owner.active_brand_id is None


@pytest.mark.asyncio
async def test_delete_brand_needs_exact_confirmation(db_session, session_factory, world):
    with pytest.raises(ValidationError) as exc_info:
        await accounts.delete_brand(db_session, world.brand.ctx, "delete acme naturals")
    assert exc_info.value.details["expected"] == "DELETE Acme Naturals"
    assert await _count(session_factory, Brand) == 1


@pytest.mark.asyncio
async def test_delete_brand_is_owner_only(db_session, world):
    admin = BrandContext(user_id=world.brand.owner.id, brand_id=world.brand.brand.id, role=MembershipRole.ADMIN)

    with pytest.raises(AuthorizationError):
        await accounts.delete_brand(db_session, admin, "DELETE Acme Naturals")


def test_confirmation_phrase():
    assert accounts.confirmation_phrase("Acme") == "DELETE Acme"
