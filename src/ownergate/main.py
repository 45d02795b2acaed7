"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The Gateway and BatchCoalescer are built here, eagerly, and
hung on app.state (building them opens no connections). Lifespan only
handles shutdown: drain pending batches, close the redis limiter client,
dispose the engine.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ownergate import __version__
from ownergate.api import api_router
from ownergate.config import settings
from ownergate.gateway.batch import BatchCoalescer
from ownergate.gateway.dependencies import gateway_error_handler
from ownergate.gateway.errors import GatewayError, ReasonCode, public_message
from ownergate.gateway.facade import build_gateway
from ownergate.gateway.ratelimit import RedisRateLimiter

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Pending batch windows are flushed before the engine goes
    away so no coalesced write is dropped.
    """
    logger.info(
        "ownergate.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        rate_limit_backend=settings.rate_limit_backend,
        verify_token_signatures=settings.verify_token_signatures,
    )

    yield

    logger.info("ownergate.shutdown")

    await app.state.coalescer.close()
    logger.info("ownergate.batches_drained", flushes=app.state.coalescer.stats.flushes)

    limiter = app.state.gateway.limiter
    if isinstance(limiter, RedisRateLimiter):
        await limiter.close()

    from ownergate.db.engine import engine
    await engine.dispose()


async def validation_error_handler(request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input → 400 ValidationFailed, without echoing the input."""
    code = ReasonCode.VALIDATION_FAILED
    return JSONResponse(
        status_code=code.http_status,
        content={"error": code.public_error, "message": public_message(code)},
    )


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    from ownergate.db.engine import engine
    from ownergate.services.profile_service import make_profile_probe

    app = FastAPI(
        title="ownergate",
        description="Owner-scoped data-access gateway",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.gateway = build_gateway(
        engine, settings, exists_probe=make_profile_probe(engine)
    )
    app.state.coalescer = BatchCoalescer(
        batch_size=settings.batch_size,
        batch_delay_ms=settings.batch_delay_ms,
    )

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RequestId → Security → RateLimit → handler
    # (so 429s still carry a request id and security headers)

    from ownergate.middleware.rate_limit import RateLimitMiddleware
    from ownergate.middleware.request_id import RequestIdMiddleware
    from ownergate.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_global_rpm,
        window_ms=settings.rate_limit_window_ms,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: ownergate.main:app)
app = create_app()
