from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl


class ReasonIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class VerifyIn(BaseModel):
    permalink: Optional[HttpUrl] = None


class SubmitIn(BaseModel):
    permalink: HttpUrl
    notes: Optional[str] = Field(default=None, max_length=2000)
    grant_usage_rights: bool = False


class TransitionOut(BaseModel):
    ok: bool = True
    entity: str
    id: UUID
    status: str
    changed: bool
    previous_status: Optional[str] = None
    strike_id: Optional[UUID] = None
    deliverable_id: Optional[UUID] = None


class ClaimOut(BaseModel):
    ok: bool = True
    match_id: UUID
    status: str
    campaign_code: str
    auto_accepted: bool
    deliverable_id: Optional[UUID] = None


class CronOut(BaseModel):
    ok: bool = True
    job: str
    skipped: bool
    reason: Optional[str] = None
    reminded: Optional[int] = None
    failed: Optional[int] = None
    strikes: Optional[int] = None
    pruned: Optional[int] = None
    conflicts: Optional[int] = None
