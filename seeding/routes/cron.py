# seeding/routes/cron.py
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Header

from seeding.core.config import settings
from seeding.core.exceptions import AuthenticationError
from seeding.db.session import get_sessionmaker
from seeding.schemas.fulfillment import CronOut
from seeding.services.cron_jobs import run_job

router = APIRouter(prefix="/cron", tags=["cron"])


def _check_secret(authorization: Optional[str], x_cron_secret: Optional[str]) -> None:
    expected = settings.cron_secret
    if not expected:
        # Unconfigured secret means the endpoint is closed
        raise AuthenticationError("Cron endpoint is not configured", code="cron_disabled")
    presented = x_cron_secret
    if not presented and authorization and authorization.lower().startswith("bearer "):
        presented = authorization[7:]
    if not presented or not hmac.compare_digest(presented, expected):
        raise AuthenticationError("Invalid cron secret", code="invalid_cron_secret")


@router.get("/{job}", response_model=CronOut)
async def run_cron_job(
    job: str,
    authorization: Optional[str] = Header(default=None),
    x_cron_secret: Optional[str] = Header(default=None),
):
    _check_secret(authorization, x_cron_secret)
    return CronOut(**await run_job(get_sessionmaker(), job))
