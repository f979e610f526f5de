# seeding/services/audit.py
from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from seeding.db.base import utcnow
from seeding.models import AuditLog
from seeding.services.auth import BrandContext, CallerContext, CreatorContext


def _actor(ctx: CallerContext) -> tuple[str, Optional[uuid.UUID]]:
    if isinstance(ctx, BrandContext):
        return "BRAND", ctx.user_id
    if isinstance(ctx, CreatorContext):
        return "CREATOR", ctx.user_id
    return "SYSTEM", None


async def record(
    session: AsyncSession,
    ctx: CallerContext,
    action: str,
    *,
    brand_id: Optional[uuid.UUID],
    entity_id: Optional[uuid.UUID] = None,
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """Append an audit row inside the caller's transaction."""
    actor_type, actor_id = _actor(ctx)
    await session.execute(
        insert(AuditLog).values(
            id=uuid.uuid4(),
            brand_id=brand_id,
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_id=entity_id,
            data=data or {},
            created_at=utcnow(),
        )
    )
