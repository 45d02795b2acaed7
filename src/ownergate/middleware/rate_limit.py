"""Global per-IP rate ceiling.

Learn: Per-action limits (read vs write) are enforced inside
Gateway.authorize(). This middleware is the coarse outer ceiling: every
request from one client IP counts against rate_limit_global_rpm,
whatever the route. It shares the gateway's limiter backend, so with the
redis backend the ceiling holds across workers.

The limiter never raises (redis errors fall back to the in-process
counter), so this middleware can't turn a limiter problem into a 5xx.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ownergate.gateway.errors import ReasonCode, public_message
from ownergate.gateway.facade import client_ip

EXEMPT_PATHS = ("/api/v1/health",)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window ceiling per client IP per window."""

    def __init__(self, app, max_requests: int = 300, window_ms: int = 60_000):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_ms = window_ms

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        gateway = getattr(request.app.state, "gateway", None)
        if gateway is None:
            return await call_next(request)

        result = await gateway.limiter.check(
            f"global:{client_ip(request)}", self.max_requests, self.window_ms
        )
        if not result.allowed:
            return JSONResponse(
                status_code=ReasonCode.RATE_LIMITED.http_status,
                content={
                    "error": ReasonCode.RATE_LIMITED.public_error,
                    "message": public_message(ReasonCode.RATE_LIMITED),
                },
                headers=result.headers(),
            )

        response = await call_next(request)
        response.headers.setdefault("X-RateLimit-Limit", str(result.limit))
        response.headers.setdefault("X-RateLimit-Remaining", str(result.remaining))
        return response
