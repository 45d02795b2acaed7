"""Gateway facade — the two entry points request handlers use.

Learn: Every handler that touches user-owned data does:

    result = await gateway.authorize(request, owner_id, "write")
    if not result.success:
        return error_response(result)
    try:
        ... storage calls on result.session ...
    finally:
        await gateway.cleanup(result)

or, equivalently, `async with gateway.authorized(...) as result:`.

authorize() runs, in order: rate limit → token parse (and optional
signature check) → identity resolution → authorization → security scope.
Every failure comes back as a structured AuthResult with a coarse reason
code; nothing inside leaks to the client.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

import redis.asyncio as aioredis
import structlog
from starlette.requests import Request

from ownergate.gateway.authz import AuthorizationEnforcer, Operation
from ownergate.gateway.context import ScopedSecurityContext, ScopeHandle, current_scope
from ownergate.gateway.errors import (
    AuthorizationFailed,
    ReasonCode,
    ServiceUnavailableError,
)
from ownergate.gateway.identity import IdentityResolver, Resolution, mask_id
from ownergate.gateway.ratelimit import (
    FixedWindowRateLimiter,
    RateLimitResult,
    RedisRateLimiter,
)
from ownergate.gateway.tokens import TokenVerifier, extract_credentials

logger = structlog.get_logger()

ExistsProbe = Callable[[str], Awaitable[bool]]


@dataclass(frozen=True)
class RateLimitRule:
    action: str
    max_requests: int
    window_ms: int = 60_000


@dataclass
class AuthResult:
    success: bool
    canonical_caller_id: Optional[str]
    reason_code: ReasonCode
    http_status: int
    error: Optional[str] = None
    resolution: Optional[Resolution] = None
    rate_limit: Optional[RateLimitResult] = None
    scope: Optional[ScopeHandle] = None
    bootstrap: bool = False

    @property
    def session(self):
        """AsyncSession bound to this request's security scope."""
        return self.scope.session if self.scope is not None else None

    @property
    def low_confidence(self) -> bool:
        return self.resolution is Resolution.LOW_CONFIDENCE

    def headers(self) -> dict[str, str]:
        if self.rate_limit is None:
            return {}
        return self.rate_limit.headers()


def _failure(
    code: ReasonCode,
    caller_id: Optional[str] = None,
    resolution: Optional[Resolution] = None,
    rate_limit: Optional[RateLimitResult] = None,
) -> AuthResult:
    return AuthResult(
        success=False,
        canonical_caller_id=caller_id,
        reason_code=code,
        http_status=code.http_status,
        error=code.public_error,
        resolution=resolution,
        rate_limit=rate_limit,
    )


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class Gateway:
    """Composes limiter, token parsing, resolver, enforcer and scope."""

    def __init__(
        self,
        context: ScopedSecurityContext,
        limiter,
        resolver: IdentityResolver,
        rules: dict[Operation, RateLimitRule],
        enforcer: Optional[AuthorizationEnforcer] = None,
        verifier: Optional[TokenVerifier] = None,
        exists_probe: Optional[ExistsProbe] = None,
        cookie_name: str = "ownergate_wallet_session",
    ):
        self.context = context
        self.limiter = limiter
        self.resolver = resolver
        self.rules = rules
        self.enforcer = enforcer or AuthorizationEnforcer()
        self.verifier = verifier
        self.exists_probe = exists_probe
        self.cookie_name = cookie_name

    async def authorize(
        self,
        request: Request,
        requested_owner_id: Optional[str],
        operation: Union[Operation, str],
        *,
        resource_exists: Optional[bool] = None,
        rate_limit: Optional[RateLimitRule] = None,
        allow_low_confidence: bool = False,
    ) -> AuthResult:
        try:
            op = Operation(operation)
        except ValueError:
            return _failure(ReasonCode.VALIDATION_FAILED)

        # 1. Rate limit (advisory, never raises)
        rule = rate_limit or self.rules[op]
        limit = await self.limiter.check(
            f"{rule.action}:{client_ip(request)}", rule.max_requests, rule.window_ms
        )
        if not limit.allowed:
            logger.warning("gateway.authorize.rate_limited", action=rule.action)
            return _failure(ReasonCode.RATE_LIMITED, rate_limit=limit)

        # 2. Token parse (+ optional verification)
        credentials = extract_credentials(request, self.cookie_name)
        if self.verifier is not None:
            credentials = self.verifier.verify(credentials)

        # 3. Identity resolution
        resolution = self.resolver.resolve(requested_owner_id, credentials.claimed_id)

        # 4. Authorization
        if op is Operation.CREATE and resource_exists is None:
            try:
                resource_exists = await self._probe(requested_owner_id, resolution)
            except ServiceUnavailableError:
                return _failure(ReasonCode.SERVICE_UNAVAILABLE, rate_limit=limit)
        decision = self.enforcer.decide(
            resolution,
            op,
            resource_exists=True if resource_exists is None else resource_exists,
            allow_low_confidence=allow_low_confidence,
        )
        if not decision.allowed:
            logger.warning(
                "gateway.authorize.denied",
                reason=decision.reason_code.value,
                operation=op.value,
                resolution=resolution.resolution.value,
                credential_source=credentials.source,
                requested=mask_id(requested_owner_id),
                caller=mask_id(decision.canonical_caller_id),
            )
            return _failure(
                decision.reason_code,
                caller_id=decision.canonical_caller_id,
                resolution=resolution.resolution,
                rate_limit=limit,
            )

        # 5. Security scope
        try:
            handle = await self.context.enter(decision.acting_as_id)
        except ServiceUnavailableError:
            return _failure(
                ReasonCode.SERVICE_UNAVAILABLE,
                caller_id=decision.canonical_caller_id,
                resolution=resolution.resolution,
                rate_limit=limit,
            )

        logger.info(
            "gateway.audit",
            operation=op.value,
            caller=mask_id(decision.canonical_caller_id),
            owner=mask_id(decision.acting_as_id),
            resolution=resolution.resolution.value,
            bootstrap=decision.bootstrap,
        )
        return AuthResult(
            success=True,
            canonical_caller_id=decision.canonical_caller_id,
            reason_code=ReasonCode.OK,
            http_status=ReasonCode.OK.http_status,
            resolution=resolution.resolution,
            rate_limit=limit,
            scope=handle,
            bootstrap=decision.bootstrap,
        )

    async def cleanup(
        self, target: Union[AuthResult, ScopeHandle, None] = None
    ) -> None:
        """Release the request's security scope. Safe to call more than once."""
        if isinstance(target, AuthResult):
            handle = target.scope
        elif target is None:
            handle = current_scope()
        else:
            handle = target
        if handle is None:
            return
        self.context.unpublish(handle)
        # Runs to completion even if the request task is being cancelled.
        await asyncio.shield(self.context.exit(handle))

    @asynccontextmanager
    async def authorized(
        self,
        request: Request,
        requested_owner_id: Optional[str],
        operation: Union[Operation, str],
        **kwargs,
    ) -> AsyncIterator[AuthResult]:
        """authorize() + guaranteed cleanup; raises AuthorizationFailed on denial."""
        result = await self.authorize(request, requested_owner_id, operation, **kwargs)
        if not result.success:
            raise AuthorizationFailed(result)
        try:
            yield result
        finally:
            await self.cleanup(result)

    async def _probe(self, requested_owner_id, resolution) -> Optional[bool]:
        if self.exists_probe is None or resolution.requested is None:
            return None
        try:
            return await self.exists_probe(resolution.requested.value)
        except Exception as e:
            logger.error("gateway.authorize.probe_failed", error=type(e).__name__)
            raise ServiceUnavailableError() from e


def default_rules(settings) -> dict[Operation, RateLimitRule]:
    window = settings.rate_limit_window_ms
    return {
        Operation.READ: RateLimitRule("read", settings.rate_limit_read_rpm, window),
        Operation.WRITE: RateLimitRule("write", settings.rate_limit_write_rpm, window),
        Operation.CREATE: RateLimitRule("create", settings.rate_limit_create_rpm, window),
        Operation.DELETE: RateLimitRule("delete", settings.rate_limit_delete_rpm, window),
    }


def build_gateway(
    engine,
    settings,
    exists_probe: Optional[ExistsProbe] = None,
    limiter=None,
) -> Gateway:
    """Wire a Gateway from settings (used by the app factory)."""
    if limiter is None:
        limiter = build_rate_limiter(settings)
    verifier = None
    if settings.verify_token_signatures:
        verifier = TokenVerifier(settings.token_secret, settings.token_algorithms)
    return Gateway(
        context=ScopedSecurityContext(engine),
        limiter=limiter,
        resolver=IdentityResolver(settings.issuer_prefix, settings.max_identifier_length),
        rules=default_rules(settings),
        verifier=verifier,
        exists_probe=exists_probe,
        cookie_name=settings.session_cookie_name,
    )


def build_rate_limiter(settings):
    memory = FixedWindowRateLimiter(sweep_interval_ms=settings.rate_limit_sweep_interval_ms)
    if settings.rate_limit_backend == "redis":
        client = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        return RedisRateLimiter(client, fallback=memory)
    return memory
