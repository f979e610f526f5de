# seeding/models/fulfillment.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, Uuid, text

from seeding.db.base import Base, TimestampMixin, UUIDMixin, utcnow
from seeding.models.enums import DeliverableStatus, DeliverableType, MatchStatus

_LIVE_MATCH = text("status IN ('PENDING_APPROVAL', 'ACCEPTED', 'CLAIMED')")
_ACTIVE_STRIKE = text("forgiven_at IS NULL")


class Match(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "matches"

    offer_id = Column(Uuid(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True)
    creator_id = Column(Uuid(as_uuid=True), ForeignKey("creators.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(24), nullable=False, default=MatchStatus.PENDING_APPROVAL.value)
    campaign_code = Column(String(32), nullable=False, unique=True)
    accepted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        # At most one live match per (offer, creator)
        Index(
            "uq_matches_live_offer_creator",
            "offer_id",
            "creator_id",
            unique=True,
            postgresql_where=_LIVE_MATCH,
            sqlite_where=_LIVE_MATCH,
        ),
    )


class Deliverable(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "deliverables"

    match_id = Column(Uuid(as_uuid=True), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default=DeliverableStatus.DUE.value)
    expected_type = Column(String(16), nullable=False, default=DeliverableType.REELS.value)
    due_at = Column(DateTime(timezone=True), nullable=False)

    submitted_permalink = Column(Text)
    submitted_notes = Column(Text)
    submitted_at = Column(DateTime(timezone=True))

    verified_permalink = Column(Text)
    verified_at = Column(DateTime(timezone=True))

    usage_rights_granted_at = Column(DateTime(timezone=True))
    usage_rights_scope = Column(String(32))

    failure_reason = Column(Text)
    reviewed_by_user_id = Column(Uuid(as_uuid=True))
    reviewed_at = Column(DateTime(timezone=True))
    reminder_sent_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("idx_deliverables_status_due", "status", "due_at"),)


class DeliverableReview(UUIDMixin, Base):
    """History of review decisions, with the submission each one superseded."""

    __tablename__ = "deliverable_reviews"

    deliverable_id = Column(
        Uuid(as_uuid=True), ForeignKey("deliverables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action = Column(String(24), nullable=False)
    reason = Column(Text)
    reviewer_user_id = Column(Uuid(as_uuid=True))
    submitted_permalink = Column(Text)
    submitted_notes = Column(Text)
    submitted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Strike(UUIDMixin, Base):
    __tablename__ = "strikes"

    creator_id = Column(Uuid(as_uuid=True), ForeignKey("creators.id", ondelete="CASCADE"), nullable=False, index=True)
    match_id = Column(Uuid(as_uuid=True), ForeignKey("matches.id", ondelete="SET NULL"))
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    forgiven_at = Column(DateTime(timezone=True))
    forgiven_reason = Column(Text)

    __table_args__ = (
        # One unforgiven strike per match
        Index(
            "uq_strikes_active_match",
            "match_id",
            unique=True,
            postgresql_where=_ACTIVE_STRIKE,
            sqlite_where=_ACTIVE_STRIKE,
        ),
    )
