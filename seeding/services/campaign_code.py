# seeding/services/campaign_code.py
from __future__ import annotations

import secrets
from typing import Optional

from seeding.core.config import settings

# No 0/O, 1/I/L: codes are read aloud and typed into captions
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6


def generate_campaign_code(prefix: Optional[str] = None) -> str:
    body = "".join(secrets.choice(ALPHABET) for _ in range(CODE_LENGTH))
    return f"{prefix or settings.campaign_code_prefix}-{body}"
