"""Token parsing and credential extraction.

Learn: Tokens arrive as three dot-separated segments (header.payload.
signature). parse_token() only checks that shape and reads the claimed
identity out of the payload. It does NOT verify the signature. Anyone
can mint a well-shaped token claiming any identity, so a deployment that
needs trust must turn on TokenVerifier (PyJWT), which runs before the
claim is handed to the identity resolver.

Credentials are looked up in this order:
1. Authorization: Bearer <three-segment token>
2. Authorization: Bearer <on-chain address>  (wallet session)
3. Session cookie with URL-encoded JSON {"walletAddress": "..."}
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import unquote

import jwt
import structlog
from starlette.requests import Request

from ownergate.gateway.identity import ONCHAIN_ADDRESS_RE

logger = structlog.get_logger()

TOKEN_DELIMITER = "."

# Registered JWT subject first, then the field names older clients used.
CLAIM_FIELDS = ("sub", "subject", "userId", "id")


@dataclass(frozen=True)
class ParsedToken:
    well_formed: bool
    claimed_id: Optional[str] = None
    claims: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Credentials:
    """What the request presented, before any trust decision."""

    source: str  # "bearer_token", "wallet_bearer", "session_cookie", "none"
    raw_token: Optional[str] = None
    claimed_id: Optional[str] = None

    @property
    def present(self) -> bool:
        return self.claimed_id is not None


NO_CREDENTIALS = Credentials(source="none")


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _claimed_identity(claims: dict[str, Any]) -> Optional[str]:
    for name in CLAIM_FIELDS:
        value = claims.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_token(raw: Optional[str]) -> ParsedToken:
    """Check the three-segment shape and extract the claimed identity."""
    if not isinstance(raw, str):
        return ParsedToken(well_formed=False)

    parts = raw.strip().split(TOKEN_DELIMITER)
    if len(parts) != 3 or not all(parts):
        return ParsedToken(well_formed=False)

    try:
        payload = json.loads(_b64url_decode(parts[1]))
    except (binascii.Error, ValueError, UnicodeDecodeError, RecursionError):
        return ParsedToken(well_formed=True)

    if not isinstance(payload, dict):
        return ParsedToken(well_formed=True)

    return ParsedToken(
        well_formed=True,
        claimed_id=_claimed_identity(payload),
        claims=payload,
    )


def _bearer_value(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if authorization and authorization.startswith("Bearer "):
        value = authorization[7:].strip()
        return value or None
    return None


def _cookie_wallet(request: Request, cookie_name: str) -> Optional[str]:
    raw = request.cookies.get(cookie_name)
    if not raw:
        return None
    try:
        data = json.loads(unquote(raw))
    except ValueError:
        logger.warning("tokens.session_cookie_unparseable")
        return None
    if isinstance(data, dict):
        wallet = data.get("walletAddress")
        if isinstance(wallet, str) and wallet:
            return wallet
    return None


def extract_credentials(request: Request, cookie_name: str) -> Credentials:
    """Find the caller's claimed identity in headers or cookies."""
    bearer = _bearer_value(request)
    if bearer:
        parsed = parse_token(bearer)
        if parsed.well_formed:
            return Credentials(
                source="bearer_token",
                raw_token=bearer,
                claimed_id=parsed.claimed_id,
            )
        if ONCHAIN_ADDRESS_RE.fullmatch(bearer):
            return Credentials(source="wallet_bearer", claimed_id=bearer)

    wallet = _cookie_wallet(request, cookie_name)
    if wallet:
        return Credentials(source="session_cookie", claimed_id=wallet)

    return NO_CREDENTIALS


class TokenVerifier:
    """Signature/expiry check layered in front of identity resolution."""

    def __init__(self, secret: str, algorithms: list[str]):
        self._secret = secret
        self._algorithms = list(algorithms)

    def verify(self, credentials: Credentials) -> Credentials:
        """Return credentials unchanged if verified, NO_CREDENTIALS otherwise.

        Wallet-style credentials carry no signature and are discarded.
        """
        if credentials.source != "bearer_token" or not credentials.raw_token:
            if credentials.present:
                logger.info("tokens.unsigned_credential_dropped", source=credentials.source)
            return NO_CREDENTIALS
        try:
            payload = jwt.decode(
                credentials.raw_token,
                self._secret,
                algorithms=self._algorithms,
                options={"verify_aud": False},
            )
        except jwt.InvalidTokenError as e:
            logger.warning("tokens.verification_failed", error=str(e))
            return NO_CREDENTIALS
        return Credentials(
            source="bearer_token",
            raw_token=credentials.raw_token,
            claimed_id=_claimed_identity(payload),
        )
