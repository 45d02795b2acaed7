"""Identity classification and reconciliation.

Learn: A caller can show up under three identity shapes:
- issuer-prefixed ids ("did:issuer:abc123") issued by the login provider
- base58 on-chain addresses (32-44 chars) from a wallet
- opaque internal record ids ("user-42")

classify() tags a raw string with its shape. resolve() reconciles the id
a request targets with the id its token claims, and reports HOW they
matched (Resolution) instead of collapsing everything into a bool. An
issuer id and a wallet address can't be proven to belong to the same
person without a verified link, so that case is LOW_CONFIDENCE and the
authorization layer decides what it is worth.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ownergate.config import settings

# base58: digits and letters minus 0, O, I and l
ONCHAIN_ADDRESS_RE = re.compile(r"[1-9A-HJ-NP-Za-km-z]{32,44}")


class IdentityKind(str, Enum):
    ISSUER_DID = "issuer_did"
    ONCHAIN_ADDRESS = "onchain_address"
    INTERNAL_ID = "internal_id"


@dataclass(frozen=True)
class CallerIdentity:
    kind: IdentityKind
    value: str


class Resolution(str, Enum):
    EXACT = "exact"
    LOW_CONFIDENCE = "low_confidence"
    MISMATCH = "mismatch"
    UNCLAIMED = "unclaimed"


@dataclass(frozen=True)
class CanonicalResolution:
    """Result of reconciling the requested id with the token's claim."""

    resolution: Resolution
    requested: Optional[CallerIdentity]
    claimed: Optional[CallerIdentity] = None

    @property
    def canonical_id(self) -> Optional[str]:
        """The caller's own identity, when a claim was accepted."""
        if self.resolution in (Resolution.EXACT, Resolution.LOW_CONFIDENCE):
            return self.claimed.value
        return None

    @property
    def low_confidence(self) -> bool:
        return self.resolution is Resolution.LOW_CONFIDENCE

    @property
    def authenticated(self) -> bool:
        return self.claimed is not None


class IdentityResolver:
    """Shape rules for one deployment (issuer prefix, id length cap)."""

    def __init__(self, issuer_prefix: str, max_internal_length: int = 100):
        if not issuer_prefix:
            raise ValueError("issuer_prefix must not be empty")
        self.issuer_prefix = issuer_prefix
        self.max_internal_length = max_internal_length

    def classify(self, raw: Optional[str]) -> Optional[CallerIdentity]:
        """Tag a raw id with its shape. Returns None if it is not an id at all."""
        if not isinstance(raw, str):
            return None
        value = raw.strip()
        if not value:
            return None
        if value.startswith(self.issuer_prefix):
            if len(value) == len(self.issuer_prefix):
                return None
            return CallerIdentity(IdentityKind.ISSUER_DID, value)
        if ONCHAIN_ADDRESS_RE.fullmatch(value):
            return CallerIdentity(IdentityKind.ONCHAIN_ADDRESS, value)
        if len(value) <= self.max_internal_length:
            return CallerIdentity(IdentityKind.INTERNAL_ID, value)
        return None

    def resolve(
        self, raw_requested: Optional[str], claimed_from_token: Optional[str]
    ) -> CanonicalResolution:
        requested = self.classify(raw_requested)
        claimed = self.classify(claimed_from_token)

        if claimed is None:
            return CanonicalResolution(Resolution.UNCLAIMED, requested)
        if requested is None:
            return CanonicalResolution(Resolution.MISMATCH, None, claimed)

        if claimed.kind == requested.kind:
            if claimed.value == requested.value:
                return CanonicalResolution(Resolution.EXACT, requested, claimed)
            return CanonicalResolution(Resolution.MISMATCH, requested, claimed)

        if (
            claimed.kind is IdentityKind.ISSUER_DID
            and requested.kind is IdentityKind.ONCHAIN_ADDRESS
        ):
            return CanonicalResolution(Resolution.LOW_CONFIDENCE, requested, claimed)

        return CanonicalResolution(Resolution.MISMATCH, requested, claimed)


def default_resolver() -> IdentityResolver:
    return IdentityResolver(settings.issuer_prefix, settings.max_identifier_length)


def validate_wallet_address(address: Optional[str]) -> bool:
    return bool(address) and ONCHAIN_ADDRESS_RE.fullmatch(address) is not None


def mask_id(value: Optional[str]) -> str:
    """Shorten an identifier for logs: first 4 + ... + last 4."""
    if not value:
        return "none"
    value = str(value)
    if len(value) <= 12:
        return value[:2] + "***"
    return f"{value[:4]}...{value[-4:]}"
