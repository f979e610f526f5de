# seeding/models/party.py
from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid

from seeding.db.base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow


class Brand(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "brands"

    name = Column(String(200), nullable=False)
    countries_default = Column(JSONType, nullable=False, default=lambda: ["IN"])
    acceptance_followers_threshold = Column(Integer, nullable=False, default=5000)
    acceptance_above_threshold_auto_accept = Column(Boolean, nullable=False, default=True)


class User(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email = Column(String(320), nullable=False, unique=True)
    name = Column(String(200))
    active_brand_id = Column(Uuid(as_uuid=True), ForeignKey("brands.id", ondelete="SET NULL"))


class BrandMembership(UUIDMixin, Base):
    __tablename__ = "brand_memberships"

    brand_id = Column(Uuid(as_uuid=True), ForeignKey("brands.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("brand_id", "user_id", name="uq_brand_memberships_brand_user"),)


class Creator(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "creators"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    username = Column(String(120))
    followers_count = Column(Integer)
    country = Column(String(2))
    email = Column(String(320))
    phone = Column(String(32))
