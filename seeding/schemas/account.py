from typing import Dict, List
from uuid import UUID

from pydantic import BaseModel, Field


class FavoriteIn(BaseModel):
    target_id: UUID
    favorite: bool = True


class FavoriteOut(BaseModel):
    ok: bool = True
    favorited: bool
    created: bool = False
    removed: bool = False


class FavoriteListOut(BaseModel):
    ok: bool = True
    ids: List[UUID] = Field(default_factory=list)


class BrandDeleteIn(BaseModel):
    confirm: str = Field(min_length=1, max_length=300)


class BrandDeleteOut(BaseModel):
    ok: bool = True
    deleted: Dict[str, int] = Field(default_factory=dict)
