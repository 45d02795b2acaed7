"""Gateway error taxonomy.

Learn: Every failure the gateway can produce maps to one ReasonCode and
one HTTP status. Handlers only ever see the coarse code and a generic
message; storage error codes and stack traces stay in the logs.
"""

from enum import Enum
from typing import Optional


class ReasonCode(str, Enum):
    """Why an authorization call ended the way it did."""

    OK = "OK"
    UNAUTHENTICATED = "Unauthenticated"
    IDENTITY_MISMATCH = "IdentityMismatch"
    FORBIDDEN = "Forbidden"
    RATE_LIMITED = "RateLimited"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    VALIDATION_FAILED = "ValidationFailed"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @property
    def retryable(self) -> bool:
        return self in (ReasonCode.RATE_LIMITED, ReasonCode.SERVICE_UNAVAILABLE)

    @property
    def public_error(self) -> str:
        """Error string safe to hand to clients.

        An identity mismatch is reported as a plain Forbidden so a client
        cannot probe which identity shape the server resolved.
        """
        if self is ReasonCode.IDENTITY_MISMATCH:
            return ReasonCode.FORBIDDEN.value
        return self.value


_HTTP_STATUS = {
    ReasonCode.OK: 200,
    ReasonCode.UNAUTHENTICATED: 401,
    ReasonCode.IDENTITY_MISMATCH: 403,
    ReasonCode.FORBIDDEN: 403,
    ReasonCode.RATE_LIMITED: 429,
    ReasonCode.SERVICE_UNAVAILABLE: 500,
    ReasonCode.VALIDATION_FAILED: 400,
}

_PUBLIC_MESSAGES = {
    ReasonCode.UNAUTHENTICATED: "Authentication required",
    ReasonCode.IDENTITY_MISMATCH: "Access denied",
    ReasonCode.FORBIDDEN: "Access denied",
    ReasonCode.RATE_LIMITED: "Rate limit exceeded. Please try again later.",
    ReasonCode.SERVICE_UNAVAILABLE: "Service temporarily unavailable",
    ReasonCode.VALIDATION_FAILED: "Invalid request",
}


def public_message(code: ReasonCode) -> str:
    return _PUBLIC_MESSAGES.get(code, "Request failed")


class GatewayError(Exception):
    """Base class for errors raised out of the gateway."""

    reason_code: ReasonCode = ReasonCode.FORBIDDEN

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or public_message(self.reason_code))

    @property
    def http_status(self) -> int:
        return self.reason_code.http_status

    @property
    def retryable(self) -> bool:
        return self.reason_code.retryable


class ServiceUnavailableError(GatewayError):
    """Raised when the security scope cannot be established."""

    reason_code = ReasonCode.SERVICE_UNAVAILABLE


class ValidationFailedError(GatewayError):
    """Raised when an input field is malformed."""

    reason_code = ReasonCode.VALIDATION_FAILED


class AuthorizationFailed(GatewayError):
    """Raised by Gateway.authorized() when a request is denied.

    Carries the full AuthResult so the exception handler can render
    rate-limit headers alongside the coarse error.
    """

    def __init__(self, result):
        self.result = result
        self.reason_code = result.reason_code
        super().__init__(public_message(result.reason_code))
