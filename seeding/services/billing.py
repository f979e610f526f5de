# seeding/services/billing.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.db.base import as_utc, utcnow
from seeding.models import BillingSubscription
from seeding.models.enums import SubjectType, SubscriptionStatus

ACTIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


def is_subscription_active(status: str, current_period_end: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if status not in ACTIVE_STATUSES:
        return False
    if current_period_end is None:
        return True
    return as_utc(current_period_end) > (now or utcnow())


async def has_active_subscription(
    session: AsyncSession,
    subject_type: SubjectType,
    subject_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Read-only premium gate. Billing state is owned by the payment integration."""
    now = now or utcnow()
    row = (
        await session.execute(
            select(BillingSubscription.id)
            .where(
                BillingSubscription.subject_type == subject_type.value,
                BillingSubscription.subject_id == subject_id,
                BillingSubscription.status.in_(ACTIVE_STATUSES),
                or_(
                    BillingSubscription.current_period_end.is_(None),
                    BillingSubscription.current_period_end > now,
                ),
            )
            .limit(1)
        )
    ).first()
    return row is not None
