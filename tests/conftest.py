import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789-abcdefghijklmnop")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from datetime import timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import seeding.models  # noqa: F401  registers tables
from seeding.db.base import Base, utcnow
from seeding.models import Brand, BrandMembership, Creator, Deliverable, Match, Offer, OfferProduct, User
from seeding.models.enums import DeliverableStatus, MatchStatus, MembershipRole, OfferStatus
from seeding.services.auth import BrandContext, CreatorContext
from seeding.services.campaign_code import generate_campaign_code


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File-backed so independent sessions get independent connections
    url = f"sqlite+aiosqlite:///{tmp_path / 'seeding.db'}"
    engine = create_async_engine(url, poolclass=NullPool, connect_args={"timeout": 30})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_creator(db_session):
    async def _make(followers_count=2500, country="IN", email=None, **fields):
        user = User(id=uuid.uuid4(), email=f"{uuid.uuid4().hex[:10]}@creators.test")
        creator = Creator(
            id=uuid.uuid4(),
            user_id=user.id,
            username=f"nano_{uuid.uuid4().hex[:6]}",
            followers_count=followers_count,
            country=country,
            email=email if email is not None else user.email,
            **fields,
        )
        db_session.add_all([user, creator])
        await db_session.commit()
        return SimpleNamespace(
            user=user,
            creator=creator,
            ctx=CreatorContext(user_id=user.id, creator_id=creator.id),
        )

    return _make


@pytest.fixture
def make_brand(db_session):
    async def _make(name="Acme Naturals", role=MembershipRole.OWNER, **fields):
        brand = Brand(id=uuid.uuid4(), name=name, **fields)
        owner = User(id=uuid.uuid4(), email=f"{uuid.uuid4().hex[:10]}@brands.test", active_brand_id=brand.id)
        membership = BrandMembership(id=uuid.uuid4(), brand_id=brand.id, user_id=owner.id, role=role.value)
        db_session.add_all([brand, owner, membership])
        await db_session.commit()
        return SimpleNamespace(
            brand=brand,
            owner=owner,
            ctx=BrandContext(user_id=owner.id, brand_id=brand.id, role=role),
        )

    return _make


@pytest.fixture
def make_offer(db_session):
    async def _make(brand_id, products=0, **fields):
        values = dict(
            id=uuid.uuid4(),
            brand_id=brand_id,
            title="Vitamin C serum launch",
            status=OfferStatus.PUBLISHED.value,
            countries_allowed=["IN"],
            max_claims=50,
            deadline_days_after_delivery=7,
            published_at=utcnow(),
        )
        values.update(fields)
        offer = Offer(**values)
        db_session.add(offer)
        for i in range(products):
            db_session.add(
                OfferProduct(
                    id=uuid.uuid4(),
                    offer_id=offer.id,
                    shopify_product_id=f"gid://shopify/Product/{1000 + i}",
                    shopify_variant_id=f"gid://shopify/ProductVariant/{2000 + i}",
                    title=f"Serum {30 + i * 20}ml",
                    quantity=i + 1,
                )
            )
        await db_session.commit()
        return offer

    return _make


@pytest.fixture
def make_match(db_session):
    async def _make(
        offer_id,
        creator_id,
        status=MatchStatus.ACCEPTED,
        deliverable_status=DeliverableStatus.SUBMITTED,
        **deliverable_fields,
    ):
        now = utcnow()
        match = Match(
            id=uuid.uuid4(),
            offer_id=offer_id,
            creator_id=creator_id,
            status=status.value,
            campaign_code=generate_campaign_code(),
            accepted_at=now if status != MatchStatus.PENDING_APPROVAL else None,
        )
        values = dict(
            id=uuid.uuid4(),
            match_id=match.id,
            status=deliverable_status.value,
            due_at=now + timedelta(days=21),
        )
        if deliverable_status == DeliverableStatus.SUBMITTED:
            values.update(
                submitted_permalink="https://instagram.com/p/abc123",
                submitted_notes="posted on launch day",
                submitted_at=now,
            )
        values.update(deliverable_fields)
        deliverable = Deliverable(**values)
        db_session.add(match)
        await db_session.flush()
        db_session.add(deliverable)
        await db_session.commit()
        return match, deliverable

    return _make


@pytest_asyncio.fixture
async def world(make_brand, make_creator, make_offer):
    """One brand with a published offer and one nano creator in the same country."""
    brand = await make_brand()
    creator = await make_creator()
    offer = await make_offer(brand.brand.id)
    return SimpleNamespace(brand=brand, creator=creator, offer=offer)
