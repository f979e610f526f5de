# seeding/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from seeding.models.audit import AuditLog
from seeding.models.billing import BillingSubscription
from seeding.models.coordination import CronLock, RateLimitBucket
from seeding.models.favorite import BrandCreatorFavorite, CreatorBrandFavorite
from seeding.models.fulfillment import Deliverable, DeliverableReview, Match, Strike
from seeding.models.notification import Notification
from seeding.models.offer import CreatorOfferRejection, Offer, OfferProduct
from seeding.models.party import Brand, BrandMembership, Creator, User

__all__ = [
    "AuditLog",
    "BillingSubscription",
    "Brand",
    "BrandCreatorFavorite",
    "BrandMembership",
    "Creator",
    "CreatorBrandFavorite",
    "CreatorOfferRejection",
    "CronLock",
    "Deliverable",
    "DeliverableReview",
    "Match",
    "Notification",
    "Offer",
    "OfferProduct",
    "RateLimitBucket",
    "Strike",
    "User",
]
