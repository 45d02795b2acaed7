"""Pydantic schemas for profiles and stats.

Learn: Free-text fields run through sanitize_input() before anything else
sees them (trim, truncate, strip < > " ' &). Structural checks (email
shape, display-name alphabet, wallet address) fail validation instead of
being silently rewritten.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ownergate.config import settings
from ownergate.gateway.validation import (
    sanitize_input,
    validate_display_name,
    validate_email,
    validate_wallet_address,
)


def _clean(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None:
        return None
    return sanitize_input(value, max_length)


class _ProfileFields(BaseModel):
    @field_validator("display_name", check_fields=False)
    @classmethod
    def check_display_name(cls, v: Optional[str]) -> Optional[str]:
        v = _clean(v, 50)
        if v is not None and not validate_display_name(v):
            raise ValueError("invalid display name")
        return v

    @field_validator("email", check_fields=False)
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        v = _clean(v, 255)
        if v and not validate_email(v):
            raise ValueError("invalid email")
        return v or None

    @field_validator("wallet_address", check_fields=False)
    @classmethod
    def check_wallet(cls, v: Optional[str]) -> Optional[str]:
        v = _clean(v, 44)
        if v and not validate_wallet_address(v):
            raise ValueError("invalid wallet address")
        return v or None

    @field_validator("bio", check_fields=False)
    @classmethod
    def check_bio(cls, v: Optional[str]) -> Optional[str]:
        return _clean(v, settings.sanitize_max_length)


# ─── Profiles ───────────────────────────────────────────

class ProfileCreate(_ProfileFields):
    user_id: str = Field(..., min_length=1, max_length=settings.max_identifier_length)
    display_name: str
    email: Optional[str] = None
    wallet_address: Optional[str] = None
    bio: Optional[str] = None


class ProfileUpdate(_ProfileFields):
    """Partial update — only non-None fields are applied."""
    display_name: Optional[str] = None
    email: Optional[str] = None
    bio: Optional[str] = None


class ProfileRead(BaseModel):
    id: uuid.UUID
    user_id: str
    display_name: str
    email: Optional[str] = None
    wallet_address: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ─── Stats ──────────────────────────────────────────────

class PointsAward(BaseModel):
    points: int = Field(..., ge=1, le=10_000)


class PointsTotal(BaseModel):
    user_id: str
    total_points: int
