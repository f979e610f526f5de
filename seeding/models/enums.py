# seeding/models/enums.py
from __future__ import annotations

import enum


class OfferStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class DeliverableType(str, enum.Enum):
    REELS = "REELS"
    FEED = "FEED"
    UGC_ONLY = "UGC_ONLY"


class UsageRightsScope(str, enum.Enum):
    PAID_ADS_12MO = "PAID_ADS_12MO"
    PAID_ADS_6MO = "PAID_ADS_6MO"
    PAID_ADS_UNLIMITED = "PAID_ADS_UNLIMITED"
    ORGANIC_ONLY = "ORGANIC_ONLY"


class MatchStatus(str, enum.Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACCEPTED = "ACCEPTED"
    CLAIMED = "CLAIMED"
    REVOKED = "REVOKED"
    CANCELED = "CANCELED"


LIVE_MATCH_STATUSES = (
    MatchStatus.PENDING_APPROVAL.value,
    MatchStatus.ACCEPTED.value,
    MatchStatus.CLAIMED.value,
)
TERMINAL_MATCH_STATUSES = (MatchStatus.REVOKED.value, MatchStatus.CANCELED.value)


class DeliverableStatus(str, enum.Enum):
    DUE = "DUE"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


class ReviewAction(str, enum.Enum):
    VERIFY = "VERIFY"
    FAIL = "FAIL"
    REQUEST_CHANGES = "REQUEST_CHANGES"


class MembershipRole(str, enum.Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class SubjectType(str, enum.Enum):
    BRAND = "BRAND"
    CREATOR = "CREATOR"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    TRIALING = "TRIALING"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    INACTIVE = "INACTIVE"


class NotificationChannel(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"


class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    ERROR = "ERROR"
