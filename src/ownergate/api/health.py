"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and
Postgres is reachable. Redis is only reported when it is the configured
rate-limit backend; otherwise the app does not depend on it.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from ownergate import __version__
from ownergate.config import settings
from ownergate.db.engine import engine

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check Postgres
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {type(e).__name__}"

    # Check Redis (only when it backs the rate limiter)
    if settings.rate_limit_backend == "redis":
        try:
            from redis.asyncio import from_url

            r = from_url(settings.redis_url)
            await r.ping()
            await r.aclose()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {type(e).__name__}"

    coalescer = getattr(request.app.state, "coalescer", None)
    if coalescer is not None:
        checks["batch_flushes"] = coalescer.stats.flushes

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k not in ("version", "batch_flushes")
    ) else "degraded"

    return {"status": status, **checks}
