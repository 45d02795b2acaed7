"""Authorization decisions — pure, side-effect free.

Learn: The enforcer walks one request through a tiny state machine:

    START ──(claim accepted)──> AUTHENTICATED ──> ALLOWED | DENIED
      └──────(no claim)──────────────────────────> ALLOWED | DENIED

A request is ALLOWED when:
  (a) the caller's canonical id equals the requested owner id, or
  (b) it is a first-time create of a resource that does not exist yet,
      for a syntactically valid owner id (bootstrap exception), or
  (c) the ids only matched at LOW_CONFIDENCE and the caller explicitly
      opted in to trusting that.

Everything else is DENIED with a reason code. A tokenless create that
finds the resource already there is Forbidden (a failed bootstrap), any
other tokenless call is Unauthenticated. Nothing here touches I/O
or raises, so an authorization decision can never be a 5xx.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ownergate.gateway.errors import ReasonCode
from ownergate.gateway.identity import CanonicalResolution, Resolution


class Operation(str, Enum):
    READ = "read"
    WRITE = "write"
    CREATE = "create"
    DELETE = "delete"


class AuthState(str, Enum):
    START = "start"
    AUTHENTICATED = "authenticated"
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    canonical_caller_id: Optional[str]
    reason_code: ReasonCode
    state: AuthState
    bootstrap: bool = False
    acting_as_id: Optional[str] = None  # owner id the storage scope binds to

    @property
    def http_status(self) -> int:
        return self.reason_code.http_status


def _deny(code: ReasonCode, caller_id: Optional[str] = None) -> AuthDecision:
    return AuthDecision(
        allowed=False,
        canonical_caller_id=caller_id,
        reason_code=code,
        state=AuthState.DENIED,
    )


def _allow(caller_id: str, owner_id: str, bootstrap: bool = False) -> AuthDecision:
    return AuthDecision(
        allowed=True,
        canonical_caller_id=caller_id,
        reason_code=ReasonCode.OK,
        state=AuthState.ALLOWED,
        bootstrap=bootstrap,
        acting_as_id=owner_id,
    )


class AuthorizationEnforcer:
    """Decides whether a resolved caller may perform an operation."""

    def decide(
        self,
        resolution: CanonicalResolution,
        operation: Operation,
        resource_exists: bool,
        allow_low_confidence: bool = False,
    ) -> AuthDecision:
        requested = resolution.requested
        if requested is None:
            return _deny(ReasonCode.VALIDATION_FAILED)

        bootstrap = operation is Operation.CREATE and not resource_exists

        if resolution.resolution is Resolution.UNCLAIMED:
            # The one place an unauthenticated id is trusted: creating the
            # caller's own not-yet-existing resource.
            if bootstrap:
                return _allow(requested.value, requested.value, bootstrap=True)
            if operation is Operation.CREATE:
                # A bootstrap attempt on a resource that already exists.
                return _deny(ReasonCode.FORBIDDEN)
            return _deny(ReasonCode.UNAUTHENTICATED)

        # AUTHENTICATED from here on.
        caller_id = resolution.claimed.value

        if resolution.resolution is Resolution.MISMATCH:
            return _deny(ReasonCode.IDENTITY_MISMATCH, caller_id)

        if resolution.resolution is Resolution.EXACT:
            return _allow(caller_id, requested.value, bootstrap=bootstrap)

        # LOW_CONFIDENCE: informational only unless explicitly trusted.
        if bootstrap:
            return _allow(caller_id, requested.value, bootstrap=True)
        if allow_low_confidence:
            return _allow(caller_id, requested.value)
        return _deny(ReasonCode.FORBIDDEN, caller_id)
