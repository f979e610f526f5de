# seeding/models/billing.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, String, Uuid

from seeding.db.base import Base, TimestampMixin, UUIDMixin


class BillingSubscription(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "billing_subscriptions"

    subject_type = Column(String(16), nullable=False)
    subject_id = Column(Uuid(as_uuid=True), nullable=False)
    provider = Column(String(32))
    status = Column(String(16), nullable=False)
    current_period_end = Column(DateTime(timezone=True))

    __table_args__ = (Index("idx_billing_subscriptions_subject", "subject_type", "subject_id"),)
