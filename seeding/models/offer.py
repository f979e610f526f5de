# seeding/models/offer.py
from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    Uuid,
)

from seeding.db.base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow
from seeding.models.enums import DeliverableType, OfferStatus


class Offer(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "offers"

    brand_id = Column(Uuid(as_uuid=True), ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    template = Column(String(64), nullable=False, default="default")
    status = Column(String(16), nullable=False, default=OfferStatus.DRAFT.value)

    countries_allowed = Column(JSONType, nullable=False, default=lambda: ["IN"])
    max_claims = Column(Integer, nullable=False, default=50)
    deadline_days_after_delivery = Column(Integer, nullable=False, default=7)
    deliverable_type = Column(String(16), nullable=False, default=DeliverableType.REELS.value)
    requires_caption_code = Column(Boolean, nullable=False, default=True)
    usage_rights_required = Column(Boolean, nullable=False, default=False)
    usage_rights_scope = Column(String(32))

    # Per-offer override of the brand's acceptance settings
    acceptance_followers_threshold = Column(Integer)
    acceptance_above_threshold_auto_accept = Column(Boolean)

    extra = Column("metadata", JSONType, nullable=False, default=dict)
    published_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("idx_offers_brand_status", "brand_id", "status"),)


class OfferProduct(UUIDMixin, Base):
    __tablename__ = "offer_products"

    offer_id = Column(Uuid(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True)
    shopify_product_id = Column(String(64), nullable=False)
    shopify_variant_id = Column(String(64))
    title = Column(Text)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class CreatorOfferRejection(Base):
    __tablename__ = "creator_offer_rejections"

    offer_id = Column(Uuid(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False)
    creator_id = Column(Uuid(as_uuid=True), ForeignKey("creators.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (PrimaryKeyConstraint("offer_id", "creator_id"),)
