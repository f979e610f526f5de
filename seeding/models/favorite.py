# seeding/models/favorite.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, PrimaryKeyConstraint, Uuid

from seeding.db.base import Base, utcnow


class BrandCreatorFavorite(Base):
    __tablename__ = "brand_creator_favorites"

    brand_id = Column(Uuid(as_uuid=True), ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)
    creator_id = Column(Uuid(as_uuid=True), ForeignKey("creators.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (PrimaryKeyConstraint("brand_id", "creator_id"),)


class CreatorBrandFavorite(Base):
    __tablename__ = "creator_brand_favorites"

    creator_id = Column(Uuid(as_uuid=True), ForeignKey("creators.id", ondelete="CASCADE"), nullable=False)
    brand_id = Column(Uuid(as_uuid=True), ForeignKey("brands.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (PrimaryKeyConstraint("creator_id", "brand_id"),)
