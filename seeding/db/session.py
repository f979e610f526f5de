# seeding/db/session.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from seeding.core.config import settings
from seeding.core.exceptions import DatabaseError
from seeding.core.logging import get_structlog_logger
from seeding.db.base import utcnow

logger = get_structlog_logger(__name__)

# Global engine instance
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def create_database_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create and configure the async database engine."""
    global engine, AsyncSessionLocal

    if engine is not None and url is None:
        return engine

    database_url = url or settings.database_url

    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            poolclass=NullPool,
            echo=settings.debug,
            connect_args={"timeout": 30},
        )
    elif settings.is_testing:
        engine = create_async_engine(
            database_url,
            poolclass=NullPool,
            echo=settings.debug,
            connect_args={"server_settings": {"jit": "off"}},
        )
    else:
        engine = create_async_engine(
            database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
            echo=settings.debug,
            connect_args={
                "command_timeout": settings.statement_timeout_seconds * 2,
                "server_settings": {
                    "application_name": "seeding_api",
                    "statement_timeout": str(settings.statement_timeout_seconds * 1000),
                },
            },
        )

    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info(
        "database.engine.created",
        dialect=engine.dialect.name,
        testing=settings.is_testing,
    )

    return engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if AsyncSessionLocal is None:
        create_database_engine()
    return AsyncSessionLocal


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    session = get_sessionmaker()()
    try:
        yield session
    finally:
        await session.close()


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run a block as one all-or-nothing unit on ``session``.

    Commits on success and rolls back on any exception. Store failures are
    re-raised as DatabaseError with the driver message kept in the log only.
    """
    try:
        yield session
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("database.transaction_error", error=str(e), error_type=type(e).__name__)
        raise DatabaseError(details={"error": str(e)}) from e
    except BaseException:
        await session.rollback()
        raise


async def health_check() -> dict:
    """Check database health."""
    try:
        async with get_sessionmaker()() as session:
            result = await session.execute(text("SELECT 1"))
            row = result.first()
        return {
            "status": "healthy" if row and row[0] == 1 else "unhealthy",
            "dialect": engine.dialect.name if engine is not None else "unknown",
            "timestamp": utcnow().isoformat(),
        }
    except Exception as e:
        logger.error("database.health_check_failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": utcnow().isoformat(),
        }
