# seeding/services/auth.py
"""
Caller contexts handed to every fulfillment operation.

The identity provider signs a bearer token carrying the user and either the
active brand membership or the creator profile. Routes decode it into an
explicit context object; services trust that object and never read request
state themselves.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional, Union

from fastapi import Header, Request
from jose import JWTError, jwt

from seeding.core.config import settings
from seeding.core.exceptions import AuthenticationError, AuthorizationError
from seeding.core.logging import get_structlog_logger
from seeding.db.base import utcnow
from seeding.models.enums import MembershipRole
from seeding.services import rate_limit

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class BrandContext:
    user_id: uuid.UUID
    brand_id: uuid.UUID
    role: MembershipRole = MembershipRole.MEMBER

    @property
    def is_owner(self) -> bool:
        return self.role == MembershipRole.OWNER


@dataclass(frozen=True)
class CreatorContext:
    user_id: uuid.UUID
    creator_id: uuid.UUID
    ip_key: Optional[str] = None


@dataclass(frozen=True)
class SystemContext:
    """Scheduled jobs acting without a user."""
    job: str


CallerContext = Union[BrandContext, CreatorContext, SystemContext]


def create_access_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in claims.items()}
    to_encode.update({"exp": expire, "iat": now, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def brand_token(user_id: uuid.UUID, brand_id: uuid.UUID, role: MembershipRole = MembershipRole.OWNER) -> str:
    return create_access_token({"sub": user_id, "kind": "brand", "brand_id": brand_id, "role": role.value})


def creator_token(user_id: uuid.UUID, creator_id: uuid.UUID) -> str:
    return create_access_token({"sub": user_id, "kind": "creator", "creator_id": creator_id})


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.warning("auth.invalid_token", error=str(e))
        raise AuthenticationError("Invalid authentication token", code="invalid_token") from e


def _extract_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("Authentication token is required", code="missing_token")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid authorization header", code="invalid_token")
    return parts[1]


def _uuid_claim(payload: Dict[str, Any], name: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload[name]))
    except (KeyError, ValueError) as e:
        raise AuthenticationError("Invalid authentication token", code="invalid_token") from e


def brand_context_from_claims(payload: Dict[str, Any]) -> BrandContext:
    if payload.get("kind") != "brand":
        raise AuthorizationError("Brand membership required", code="brand_required")
    try:
        role = MembershipRole(payload.get("role", MembershipRole.MEMBER.value))
    except ValueError as e:
        raise AuthenticationError("Invalid authentication token", code="invalid_token") from e
    return BrandContext(
        user_id=_uuid_claim(payload, "sub"),
        brand_id=_uuid_claim(payload, "brand_id"),
        role=role,
    )


def creator_context_from_claims(payload: Dict[str, Any], ip_key: Optional[str] = None) -> CreatorContext:
    if payload.get("kind") != "creator":
        raise AuthorizationError("Creator profile required", code="creator_required")
    return CreatorContext(
        user_id=_uuid_claim(payload, "sub"),
        creator_id=_uuid_claim(payload, "creator_id"),
        ip_key=ip_key,
    )


async def get_brand_context(authorization: Optional[str] = Header(default=None)) -> BrandContext:
    return brand_context_from_claims(decode_token(_extract_token(authorization)))


async def get_creator_context(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    x_forwarded_for: Optional[str] = Header(default=None),
) -> CreatorContext:
    client_host = request.client.host if request.client else None
    payload = decode_token(_extract_token(authorization))
    return creator_context_from_claims(payload, ip_key=rate_limit.ip_key(x_forwarded_for, client_host))
