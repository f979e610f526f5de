# seeding/models/coordination.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, PrimaryKeyConstraint, String

from seeding.db.base import Base


class RateLimitBucket(Base):
    __tablename__ = "rate_limit_buckets"

    key = Column(String(200), nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
    count = Column(Integer, nullable=False, default=0)

    __table_args__ = (PrimaryKeyConstraint("key", "window_start"),)


class CronLock(Base):
    __tablename__ = "cron_locks"

    job = Column(String(100), primary_key=True)
    locked_until = Column(DateTime(timezone=True), nullable=False)
    locked_by = Column(String(64), nullable=False)
