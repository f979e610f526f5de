# seeding/services/fulfillment.py
"""
Match/Deliverable state machine.

Every review or submission action is a tagged command. ``MATCH_RULES`` and
``DELIVERABLE_RULES`` list, per command, the states it may start from, the
state it lands in, and the states where it is a no-op. ``apply`` is the only
entry point: it checks the caller's ownership, locks the row, applies the
guarded update and any side rows (strike, review history, audit, pending
notifications) in one transaction, then dispatches notifications.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, List, Optional, Union

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.core.config import settings
from seeding.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from seeding.core.logging import get_structlog_logger
from seeding.db.base import utcnow
from seeding.db.session import atomic
from seeding.db.statements import insert_for
from seeding.models import CreatorOfferRejection, Deliverable, DeliverableReview, Match, Offer, Strike
from seeding.models.enums import (
    LIVE_MATCH_STATUSES,
    TERMINAL_MATCH_STATUSES,
    DeliverableStatus,
    MatchStatus,
    ReviewAction,
)
from seeding.services import audit, notifications
from seeding.services.auth import BrandContext, CallerContext, CreatorContext, SystemContext

logger = get_structlog_logger(__name__)

MISSED_DEADLINE_REASON = "Missed deadline"
DEFAULT_FAIL_REASON = "Rejected by brand"
DEFAULT_CHANGES_REASON = "Changes requested by brand"

# Everything a reviewer could mistake for a live submission
# Deadlines and reminders only apply once the brand has accepted the creator
ENFORCEABLE_MATCH_STATUSES = frozenset({MatchStatus.ACCEPTED.value, MatchStatus.CLAIMED.value})

CLEARED_SUBMISSION = {
    "submitted_permalink": None,
    "submitted_notes": None,
    "submitted_at": None,
    "verified_permalink": None,
    "verified_at": None,
    "usage_rights_granted_at": None,
    "usage_rights_scope": None,
}


# Commands


@dataclass(frozen=True)
class AcceptMatch:
    match_id: uuid.UUID


@dataclass(frozen=True)
class MarkShipped:
    match_id: uuid.UUID


@dataclass(frozen=True)
class RejectMatch:
    match_id: uuid.UUID


@dataclass(frozen=True)
class CancelMatch:
    match_id: uuid.UUID


@dataclass(frozen=True)
class SubmitDeliverable:
    match_id: uuid.UUID
    permalink: str
    notes: Optional[str] = None
    grant_usage_rights: bool = False


@dataclass(frozen=True)
class VerifyDeliverable:
    deliverable_id: uuid.UUID
    permalink: Optional[str] = None


@dataclass(frozen=True)
class FailDeliverable:
    deliverable_id: uuid.UUID
    reason: Optional[str] = None


@dataclass(frozen=True)
class RequestChanges:
    deliverable_id: uuid.UUID
    reason: Optional[str] = None


@dataclass(frozen=True)
class ExpireDeliverable:
    deliverable_id: uuid.UUID


MatchCommand = Union[AcceptMatch, MarkShipped, RejectMatch, CancelMatch]
DeliverableCommand = Union[SubmitDeliverable, VerifyDeliverable, FailDeliverable, RequestChanges, ExpireDeliverable]
Command = Union[MatchCommand, DeliverableCommand]


@dataclass(frozen=True)
class Rule:
    allowed_from: FrozenSet[str]
    target: str
    noop_from: FrozenSet[str] = frozenset()
    actors: tuple = (BrandContext,)


def _states(*values) -> FrozenSet[str]:
    return frozenset(v.value if hasattr(v, "value") else v for v in values)


MATCH_RULES: Dict[type, Rule] = {
    AcceptMatch: Rule(
        allowed_from=_states(MatchStatus.PENDING_APPROVAL),
        target=MatchStatus.ACCEPTED.value,
        noop_from=_states(MatchStatus.ACCEPTED),
    ),
    MarkShipped: Rule(
        allowed_from=_states(MatchStatus.ACCEPTED),
        target=MatchStatus.CLAIMED.value,
        noop_from=_states(MatchStatus.CLAIMED),
    ),
    RejectMatch: Rule(
        allowed_from=_states(MatchStatus.PENDING_APPROVAL, MatchStatus.ACCEPTED),
        target=MatchStatus.REVOKED.value,
        noop_from=_states(*TERMINAL_MATCH_STATUSES),
    ),
    CancelMatch: Rule(
        allowed_from=_states(*LIVE_MATCH_STATUSES),
        target=MatchStatus.CANCELED.value,
        noop_from=_states(*TERMINAL_MATCH_STATUSES),
        actors=(BrandContext, CreatorContext),
    ),
}

DELIVERABLE_RULES: Dict[type, Rule] = {
    SubmitDeliverable: Rule(
        allowed_from=_states(DeliverableStatus.DUE, DeliverableStatus.SUBMITTED),
        target=DeliverableStatus.SUBMITTED.value,
        actors=(CreatorContext,),
    ),
    VerifyDeliverable: Rule(
        allowed_from=_states(DeliverableStatus.DUE, DeliverableStatus.SUBMITTED),
        target=DeliverableStatus.VERIFIED.value,
        noop_from=_states(DeliverableStatus.VERIFIED),
    ),
    FailDeliverable: Rule(
        allowed_from=_states(DeliverableStatus.DUE, DeliverableStatus.SUBMITTED, DeliverableStatus.VERIFIED),
        target=DeliverableStatus.FAILED.value,
        noop_from=_states(DeliverableStatus.FAILED),
    ),
    RequestChanges: Rule(
        allowed_from=_states(DeliverableStatus.DUE, DeliverableStatus.SUBMITTED, DeliverableStatus.VERIFIED),
        target=DeliverableStatus.DUE.value,
    ),
    ExpireDeliverable: Rule(
        allowed_from=_states(DeliverableStatus.DUE),
        target=DeliverableStatus.FAILED.value,
        noop_from=_states(DeliverableStatus.SUBMITTED, DeliverableStatus.VERIFIED, DeliverableStatus.FAILED),
        actors=(SystemContext,),
    ),
}


@dataclass(frozen=True)
class TransitionResult:
    entity: str
    id: uuid.UUID
    status: str
    changed: bool
    previous_status: Optional[str] = None
    strike_id: Optional[uuid.UUID] = None
    deliverable_id: Optional[uuid.UUID] = None
    notification_ids: List[uuid.UUID] = field(default_factory=list)


def _check_actor(rule: Rule, ctx: CallerContext) -> None:
    if not isinstance(ctx, rule.actors):
        raise AuthorizationError("Not allowed for this account type", code="forbidden_actor")


def _illegal(entity: str, current: str, command: Command) -> ConflictError:
    return ConflictError(
        f"Cannot {type(command).__name__} a {entity} in status {current}",
        code="invalid_transition",
        details={"entity": entity, "status": current, "command": type(command).__name__},
    )


def due_at_for(accepted_at: datetime, deadline_days_after_delivery: int) -> datetime:
    return accepted_at + timedelta(days=deadline_days_after_delivery + settings.deliverable_grace_days)


async def ensure_deliverable(
    session: AsyncSession,
    *,
    match_id: uuid.UUID,
    expected_type: str,
    deadline_days_after_delivery: int,
    accepted_at: datetime,
    refresh_due: bool = False,
) -> uuid.UUID:
    """Create the DUE deliverable for a match unless one exists. Returns its id.

    With ``refresh_due`` an existing deliverable that is still DUE gets its
    deadline recomputed from ``accepted_at``.
    """
    stmt = insert_for(session, Deliverable).values(
        id=uuid.uuid4(),
        match_id=match_id,
        status=DeliverableStatus.DUE.value,
        expected_type=expected_type,
        due_at=due_at_for(accepted_at, deadline_days_after_delivery),
        created_at=accepted_at,
        updated_at=accepted_at,
    )
    if refresh_due:
        stmt = stmt.on_conflict_do_update(
            index_elements=[Deliverable.match_id],
            set_={"due_at": stmt.excluded.due_at, "updated_at": stmt.excluded.updated_at},
            where=Deliverable.status == DeliverableStatus.DUE.value,
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=[Deliverable.match_id])
    await session.execute(stmt)
    return (await session.execute(select(Deliverable.id).where(Deliverable.match_id == match_id))).scalar_one()


# Loading


_MATCH_COLUMNS = (
    Match.id,
    Match.status,
    Match.offer_id,
    Match.creator_id,
    Match.campaign_code,
    Match.accepted_at,
    Offer.brand_id,
    Offer.title,
    Offer.deliverable_type,
    Offer.deadline_days_after_delivery,
    Offer.usage_rights_required,
    Offer.usage_rights_scope,
)


def _owned_by(stmt, ctx: CallerContext):
    if isinstance(ctx, BrandContext):
        return stmt.where(Offer.brand_id == ctx.brand_id)
    if isinstance(ctx, CreatorContext):
        return stmt.where(Match.creator_id == ctx.creator_id)
    return stmt


async def _load_match(session: AsyncSession, ctx: CallerContext, match_id: uuid.UUID):
    stmt = (
        select(*_MATCH_COLUMNS)
        .join(Offer, Offer.id == Match.offer_id)
        .where(Match.id == match_id)
        .with_for_update(of=Match)
    )
    row = (await session.execute(_owned_by(stmt, ctx))).one_or_none()
    if row is None:
        # Same answer for missing and not-owned
        raise NotFoundError("Match not found")
    return row


async def _load_deliverable(
    session: AsyncSession, ctx: CallerContext, deliverable_id: uuid.UUID, *, lock_match: bool = False
):
    stmt = (
        select(
            Deliverable.id.label("deliverable_id"),
            Deliverable.status.label("deliverable_status"),
            Deliverable.submitted_permalink,
            Deliverable.submitted_notes,
            Deliverable.submitted_at,
            Deliverable.usage_rights_granted_at,
            *_MATCH_COLUMNS,
        )
        .join(Match, Match.id == Deliverable.match_id)
        .join(Offer, Offer.id == Match.offer_id)
        .where(Deliverable.id == deliverable_id)
        .with_for_update(of=(Deliverable, Match) if lock_match else Deliverable)
    )
    row = (await session.execute(_owned_by(stmt, ctx))).one_or_none()
    if row is None:
        raise NotFoundError("Deliverable not found")
    return row


# Entry point


async def apply(
    session: AsyncSession,
    ctx: CallerContext,
    command: Command,
    *,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Apply one transition command as a single atomic unit."""
    now = now or utcnow()

    if type(command) in MATCH_RULES:
        handler = _apply_match
    elif type(command) in DELIVERABLE_RULES:
        handler = _apply_deliverable
    else:
        raise ValidationError(f"Unknown command {type(command).__name__}", code="unknown_command")

    async with atomic(session):
        result = await handler(session, ctx, command, now)

    if result.changed:
        logger.info(
            "fulfillment.transition",
            command=type(command).__name__,
            entity=result.entity,
            id=str(result.id),
            previous_status=result.previous_status,
            status=result.status,
            strike_id=str(result.strike_id) if result.strike_id else None,
        )
    if result.notification_ids:
        await notifications.dispatch(session, result.notification_ids)
    return result


async def _apply_match(session: AsyncSession, ctx: CallerContext, command: MatchCommand, now: datetime) -> TransitionResult:
    rule = MATCH_RULES[type(command)]
    _check_actor(rule, ctx)
    row = await _load_match(session, ctx, command.match_id)

    if row.status in rule.noop_from:
        return TransitionResult(entity="match", id=row.id, status=row.status, changed=False, previous_status=row.status)
    if row.status not in rule.allowed_from:
        raise _illegal("match", row.status, command)

    values: Dict[str, Any] = {"status": rule.target, "updated_at": now}
    if isinstance(command, AcceptMatch):
        values["accepted_at"] = now

    result = await session.execute(
        update(Match)
        .where(Match.id == row.id, Match.status.in_(rule.allowed_from))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # Lost a race with another transition on the same match
        current = (await session.execute(select(Match.status).where(Match.id == row.id))).scalar_one()
        if current in rule.noop_from:
            return TransitionResult(entity="match", id=row.id, status=current, changed=False, previous_status=current)
        raise _illegal("match", current, command)

    deliverable_id = None
    notification_ids: List[uuid.UUID] = []

    if isinstance(command, AcceptMatch):
        deliverable_id = await ensure_deliverable(
            session,
            match_id=row.id,
            expected_type=row.deliverable_type,
            deadline_days_after_delivery=row.deadline_days_after_delivery,
            accepted_at=now,
            refresh_due=True,
        )
        notification_ids.append(
            await notifications.notify_creator(
                session,
                row.creator_id,
                "creator_approved",
                {"offer_title": row.title, "campaign_code": row.campaign_code},
            )
        )
    elif isinstance(command, RejectMatch):
        await session.execute(
            insert_for(session, CreatorOfferRejection)
            .values(offer_id=row.offer_id, creator_id=row.creator_id, created_at=now)
            .on_conflict_do_nothing(
                index_elements=[CreatorOfferRejection.offer_id, CreatorOfferRejection.creator_id]
            )
        )

    await audit.record(
        session,
        ctx,
        f"match.{rule.target.lower()}",
        brand_id=row.brand_id,
        entity_id=row.id,
        data={"from": row.status, "to": rule.target},
    )

    return TransitionResult(
        entity="match",
        id=row.id,
        status=rule.target,
        changed=True,
        previous_status=row.status,
        deliverable_id=deliverable_id,
        notification_ids=[n for n in notification_ids if n is not None],
    )


async def _deliverable_for_submission(session: AsyncSession, ctx: CreatorContext, command: SubmitDeliverable, now: datetime):
    match = await _load_match(session, ctx, command.match_id)
    if match.status not in (MatchStatus.ACCEPTED.value, MatchStatus.CLAIMED.value):
        raise ConflictError(
            f"Cannot submit content for a match in status {match.status}",
            code="invalid_transition",
            details={"entity": "match", "status": match.status, "command": "SubmitDeliverable"},
        )
    deliverable_id = await ensure_deliverable(
        session,
        match_id=match.id,
        expected_type=match.deliverable_type,
        deadline_days_after_delivery=match.deadline_days_after_delivery,
        accepted_at=match.accepted_at or now,
    )
    return await _load_deliverable(session, ctx, deliverable_id)


async def _apply_deliverable(
    session: AsyncSession,
    ctx: CallerContext,
    command: DeliverableCommand,
    now: datetime,
) -> TransitionResult:
    rule = DELIVERABLE_RULES[type(command)]
    _check_actor(rule, ctx)

    if isinstance(command, SubmitDeliverable):
        if not command.permalink or not command.permalink.strip():
            raise ValidationError("Permalink is required", code="permalink_required")
        row = await _deliverable_for_submission(session, ctx, command, now)
    else:
        row = await _load_deliverable(
            session, ctx, command.deliverable_id, lock_match=isinstance(command, ExpireDeliverable)
        )

    current = row.deliverable_status
    expiring = isinstance(command, ExpireDeliverable)
    if current in rule.noop_from or (expiring and row.status not in ENFORCEABLE_MATCH_STATUSES):
        return TransitionResult(
            entity="deliverable", id=row.deliverable_id, status=current, changed=False, previous_status=current
        )
    if current not in rule.allowed_from:
        raise _illegal("deliverable", current, command)

    reviewer_id = ctx.user_id if isinstance(ctx, BrandContext) else None
    values: Dict[str, Any] = {"status": rule.target, "updated_at": now}
    review_action: Optional[ReviewAction] = None
    review_reason: Optional[str] = None
    notify: Optional[tuple[str, Dict[str, Any]]] = None
    issue_strike = False

    if isinstance(command, SubmitDeliverable):
        values.update(
            submitted_permalink=command.permalink.strip(),
            submitted_notes=command.notes,
            submitted_at=now,
            usage_rights_granted_at=now if command.grant_usage_rights else None,
            usage_rights_scope=row.usage_rights_scope if command.grant_usage_rights else None,
        )

    elif isinstance(command, VerifyDeliverable):
        permalink = (command.permalink or "").strip() or row.submitted_permalink
        if not permalink:
            raise ValidationError("No permalink to verify", code="permalink_required")
        if row.usage_rights_required and row.usage_rights_granted_at is None:
            raise ValidationError("Usage rights have not been granted", code="usage_rights_missing")
        values.update(
            verified_permalink=permalink,
            verified_at=now,
            failure_reason=None,
            reviewed_by_user_id=reviewer_id,
            reviewed_at=now,
        )
        review_action = ReviewAction.VERIFY

    elif isinstance(command, (FailDeliverable, ExpireDeliverable)):
        if isinstance(command, ExpireDeliverable):
            review_reason = MISSED_DEADLINE_REASON
        else:
            review_reason = (command.reason or "").strip() or DEFAULT_FAIL_REASON
        values.update(
            CLEARED_SUBMISSION,
            failure_reason=review_reason,
            reviewed_by_user_id=reviewer_id,
            reviewed_at=now,
        )
        review_action = ReviewAction.FAIL
        issue_strike = True

    elif isinstance(command, RequestChanges):
        review_reason = (command.reason or "").strip() or DEFAULT_CHANGES_REASON
        values.update(
            CLEARED_SUBMISSION,
            failure_reason=review_reason,
            reviewed_by_user_id=reviewer_id,
            reviewed_at=now,
            reminder_sent_at=None,
        )
        review_action = ReviewAction.REQUEST_CHANGES
        notify = ("changes_requested", {"offer_title": row.title, "reason": review_reason})

    guard = [Deliverable.id == row.deliverable_id, Deliverable.status.in_(rule.allowed_from)]
    if expiring:
        guard.append(
            Deliverable.match_id.in_(
                select(Match.id).where(Match.id == row.id, Match.status.in_(ENFORCEABLE_MATCH_STATUSES))
            )
        )
    result = await session.execute(
        update(Deliverable).where(*guard).values(**values).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        latest = (
            await session.execute(select(Deliverable.status).where(Deliverable.id == row.deliverable_id))
        ).scalar_one()
        if latest in rule.noop_from or expiring:
            return TransitionResult(
                entity="deliverable", id=row.deliverable_id, status=latest, changed=False, previous_status=latest
            )
        raise _illegal("deliverable", latest, command)

    strike_id = None
    if issue_strike:
        strike_id = await _issue_strike(session, row.creator_id, row.id, review_reason, now)
        if strike_id is not None:
            notify = ("strike_issued", {"offer_title": row.title, "reason": review_reason})

    if review_action is not None:
        await session.execute(
            insert(DeliverableReview).values(
                id=uuid.uuid4(),
                deliverable_id=row.deliverable_id,
                action=review_action.value,
                reason=review_reason,
                reviewer_user_id=reviewer_id,
                submitted_permalink=row.submitted_permalink,
                submitted_notes=row.submitted_notes,
                submitted_at=row.submitted_at,
                created_at=now,
            )
        )

    notification_ids: List[uuid.UUID] = []
    if notify is not None:
        notification_id = await notifications.notify_creator(session, row.creator_id, notify[0], notify[1])
        if notification_id is not None:
            notification_ids.append(notification_id)

    await audit.record(
        session,
        ctx,
        f"deliverable.{rule.target.lower()}",
        brand_id=row.brand_id,
        entity_id=row.deliverable_id,
        data={"from": current, "to": rule.target, "reason": review_reason, "strike_id": str(strike_id) if strike_id else None},
    )

    return TransitionResult(
        entity="deliverable",
        id=row.deliverable_id,
        status=rule.target,
        changed=True,
        previous_status=current,
        strike_id=strike_id,
        deliverable_id=row.deliverable_id,
        notification_ids=notification_ids,
    )


async def _issue_strike(
    session: AsyncSession,
    creator_id: uuid.UUID,
    match_id: uuid.UUID,
    reason: str,
    now: datetime,
) -> Optional[uuid.UUID]:
    """Insert the match's strike unless an unforgiven one already exists."""
    stmt = (
        insert_for(session, Strike)
        .values(id=uuid.uuid4(), creator_id=creator_id, match_id=match_id, reason=reason, created_at=now)
        .on_conflict_do_nothing(index_elements=[Strike.match_id], index_where=Strike.forgiven_at.is_(None))
        .returning(Strike.id)
    )
    strike_id = (await session.execute(stmt)).scalar_one_or_none()
    if strike_id is None:
        logger.info("strike.suppressed", match_id=str(match_id), creator_id=str(creator_id))
    return strike_id
