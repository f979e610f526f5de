# seeding/services/migration_lock.py
"""
Schema migration guarded by a process-wide PostgreSQL advisory lock.

Concurrent deploys race for ``pg_try_advisory_lock``; the loser skips the
migration instead of waiting for the winner to finish.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from seeding.core.config import settings
from seeding.core.logging import get_structlog_logger
from seeding.db.base import Base

logger = get_structlog_logger(__name__)


async def try_advisory_lock(conn: AsyncConnection, key: int) -> bool:
    if conn.dialect.name != "postgresql":
        # Single-file databases have no concurrent deploys to exclude
        return True
    result = await conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key})
    return bool(result.scalar())


async def advisory_unlock(conn: AsyncConnection, key: int) -> None:
    if conn.dialect.name != "postgresql":
        return
    await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
    await conn.commit()


async def run_migrations(engine: AsyncEngine, lock_key: Optional[int] = None) -> bool:
    """Create missing tables. Returns False when another process holds the lock."""
    key = settings.migration_lock_key if lock_key is None else lock_key

    async with engine.connect() as conn:
        if not await try_advisory_lock(conn, key):
            await conn.rollback()
            logger.info("migrations.skipped", reason="lock_held", lock_key=key)
            return False

        try:
            await conn.run_sync(Base.metadata.create_all)
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        finally:
            await advisory_unlock(conn, key)

    logger.info("migrations.applied", lock_key=key)
    return True
