# seeding/models/notification.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, String, Text, Uuid

from seeding.db.base import Base, JSONType, UUIDMixin, utcnow
from seeding.models.enums import NotificationStatus


class Notification(UUIDMixin, Base):
    __tablename__ = "notifications"

    channel = Column(String(16), nullable=False)
    recipient = Column(String(320), nullable=False)
    template = Column(String(64), nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default=NotificationStatus.PENDING.value)
    error = Column(Text)
    creator_id = Column(Uuid(as_uuid=True))
    brand_id = Column(Uuid(as_uuid=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    sent_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("idx_notifications_status", "status", "created_at"),)
