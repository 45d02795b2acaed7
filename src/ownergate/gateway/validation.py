"""Input sanitization and field validators."""

import re

from ownergate.gateway.errors import ValidationFailedError
from ownergate.gateway.identity import validate_wallet_address

__all__ = [
    "sanitize_input",
    "validate_display_name",
    "validate_email",
    "validate_wallet_address",
]

_STRIP_CHARS = re.compile(r"[<>\"'&]")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DISPLAY_NAME_RE = re.compile(r"^[a-zA-Z0-9\s\-_.]+$")


def sanitize_input(value: str, max_length: int = 255) -> str:
    """Trim, truncate to max_length, then strip < > " ' &."""
    if not isinstance(value, str):
        raise ValidationFailedError("Input must be a string")
    return _STRIP_CHARS.sub("", value.strip()[:max_length])


def validate_email(email: str) -> bool:
    return isinstance(email, str) and _EMAIL_RE.match(email) is not None


def validate_display_name(display_name: str) -> bool:
    if not isinstance(display_name, str) or not 2 <= len(display_name) <= 50:
        return False
    return _DISPLAY_NAME_RE.match(display_name) is not None
