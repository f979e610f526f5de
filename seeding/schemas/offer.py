from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from seeding.models.enums import DeliverableType, OfferStatus, UsageRightsScope


class OfferProductIn(BaseModel):
    shopify_product_id: str = Field(min_length=1, max_length=64)
    shopify_variant_id: Optional[str] = Field(default=None, max_length=64)
    title: Optional[str] = None
    quantity: int = Field(default=1, ge=1, le=100)


class OfferIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    template: str = Field(default="default", max_length=64)
    status: OfferStatus = OfferStatus.DRAFT
    countries_allowed: List[str] = Field(min_length=1)
    max_claims: int = Field(default=50, ge=1, le=10000)
    deadline_days_after_delivery: int = Field(default=7, ge=1, le=90)
    deliverable_type: DeliverableType = DeliverableType.REELS
    requires_caption_code: bool = True
    usage_rights_required: bool = False
    usage_rights_scope: Optional[UsageRightsScope] = None
    acceptance_followers_threshold: Optional[int] = Field(default=None, ge=0)
    acceptance_above_threshold_auto_accept: Optional[bool] = None
    extra: Dict[str, Any] = Field(default_factory=dict)
    products: List[OfferProductIn] = Field(default_factory=list)


class OfferStatusIn(BaseModel):
    status: OfferStatus


class OfferOut(BaseModel):
    ok: bool = True
    offer_id: UUID
    status: Optional[str] = None
    source_offer_id: Optional[UUID] = None
    product_ids: List[UUID] = Field(default_factory=list)
