"""Request authentication, authorization and data-access gateway.

Learn: Request handlers only need the Gateway facade (authorize/cleanup)
and, for bursty writes, the BatchCoalescer. The other modules are the
building blocks the facade composes, leaf-first:

    ratelimit → tokens → identity → authz → context → facade
                                               batch ┘
"""

from ownergate.gateway.authz import AuthDecision, AuthorizationEnforcer, Operation
from ownergate.gateway.batch import BatchCoalescer
from ownergate.gateway.context import ScopedSecurityContext, current_scope
from ownergate.gateway.errors import (
    AuthorizationFailed,
    GatewayError,
    ReasonCode,
    ServiceUnavailableError,
    ValidationFailedError,
)
from ownergate.gateway.facade import AuthResult, Gateway, RateLimitRule, build_gateway
from ownergate.gateway.identity import (
    CallerIdentity,
    IdentityKind,
    IdentityResolver,
    Resolution,
)
from ownergate.gateway.ratelimit import FixedWindowRateLimiter, check_limit
from ownergate.gateway.tokens import parse_token
from ownergate.gateway.validation import sanitize_input

__all__ = [
    "AuthDecision",
    "AuthResult",
    "AuthorizationEnforcer",
    "AuthorizationFailed",
    "BatchCoalescer",
    "CallerIdentity",
    "FixedWindowRateLimiter",
    "Gateway",
    "GatewayError",
    "IdentityKind",
    "IdentityResolver",
    "Operation",
    "RateLimitRule",
    "ReasonCode",
    "Resolution",
    "ScopedSecurityContext",
    "ServiceUnavailableError",
    "ValidationFailedError",
    "build_gateway",
    "check_limit",
    "current_scope",
    "parse_token",
    "sanitize_input",
]
