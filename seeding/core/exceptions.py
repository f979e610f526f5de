# seeding/core/exceptions.py
from __future__ import annotations

from typing import Any, Dict, Optional


class BaseAPIException(Exception):
    """Base exception for all API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(BaseAPIException):
    """Authentication failed."""
    def __init__(self, message: str = "Authentication failed", **kwargs):
        kwargs.setdefault("code", "unauthorized")
        super().__init__(message, status_code=401, **kwargs)


class PaymentRequiredError(BaseAPIException):
    """Premium action without an active subscription."""
    def __init__(self, message: str = "Active subscription required", **kwargs):
        kwargs.setdefault("code", "payment_required")
        super().__init__(message, status_code=402, **kwargs)


class AuthorizationError(BaseAPIException):
    """Role or membership mismatch."""
    def __init__(self, message: str = "Forbidden", **kwargs):
        kwargs.setdefault("code", "forbidden")
        super().__init__(message, status_code=403, **kwargs)


class NotFoundError(BaseAPIException):
    """Entity missing or not owned by the caller."""
    def __init__(self, message: str = "Not found", **kwargs):
        kwargs.setdefault("code", "not_found")
        super().__init__(message, status_code=404, **kwargs)


class ValidationError(BaseAPIException):
    """Malformed or out-of-range input."""
    def __init__(self, message: str = "Invalid request", **kwargs):
        kwargs.setdefault("code", "validation_error")
        super().__init__(message, status_code=422, **kwargs)


class ConflictError(BaseAPIException):
    """Invariant violation."""
    def __init__(self, message: str = "Conflict", **kwargs):
        kwargs.setdefault("code", "conflict")
        super().__init__(message, status_code=409, **kwargs)


class LockUnavailableError(BaseAPIException):
    """Advisory lock or rate limit denied. Callers back off."""
    def __init__(self, message: str = "Resource busy", status_code: int = 423, **kwargs):
        kwargs.setdefault("code", "lock_unavailable")
        super().__init__(message, status_code=status_code, **kwargs)


class RateLimitError(LockUnavailableError):
    """Rate limit exceeded."""
    def __init__(self, message: str = "Too many requests", retry_after: Optional[int] = None, **kwargs):
        kwargs.setdefault("code", "rate_limited")
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after


class DatabaseError(BaseAPIException):
    """Store failure. Detail is kept server-side."""
    def __init__(self, message: str = "Internal error", **kwargs):
        kwargs.setdefault("code", "store_error")
        super().__init__(message, status_code=500, **kwargs)
