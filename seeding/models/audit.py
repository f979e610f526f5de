# seeding/models/audit.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid

from seeding.db.base import Base, JSONType, UUIDMixin, utcnow


class AuditLog(UUIDMixin, Base):
    __tablename__ = "audit_logs"

    brand_id = Column(Uuid(as_uuid=True), ForeignKey("brands.id", ondelete="CASCADE"), index=True)
    actor_type = Column(String(16), nullable=False)
    actor_id = Column(Uuid(as_uuid=True))
    action = Column(String(64), nullable=False)
    entity_id = Column(Uuid(as_uuid=True))
    data = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
