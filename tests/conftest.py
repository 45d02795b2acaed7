"""Test fixtures — fake storage, a real Gateway, and an HTTP client.

Learn: Nothing here needs Postgres or Redis. The gateway is built from
its real parts (limiter, resolver, enforcer, scoped context) over the
FakeEngine from tests/fakes.py, and HTTP tests drive the real app
through httpx's ASGITransport with the gateway and coalescer swapped
out through app.dependency_overrides.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ownergate.gateway.batch import BatchCoalescer
from ownergate.gateway.context import ScopedSecurityContext
from ownergate.gateway.dependencies import get_coalescer, get_gateway
from ownergate.gateway.facade import Gateway
from ownergate.gateway.identity import IdentityResolver
from ownergate.gateway.ratelimit import FixedWindowRateLimiter
from ownergate.main import app
from tests.fakes import ISSUER_PREFIX, FakeClock, FakeEngine, FakeSession, make_rules


# ═══════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════

@pytest.fixture()
def fake_engine():
    return FakeEngine()


@pytest.fixture()
def security_context(fake_engine):
    return ScopedSecurityContext(fake_engine, session_factory=FakeSession)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def limiter(clock):
    return FixedWindowRateLimiter(clock=clock)


@pytest.fixture()
def resolver():
    return IdentityResolver(ISSUER_PREFIX)


@pytest.fixture()
def existing_owners():
    """Owner ids the gateway's existence probe reports as present."""
    return set()


@pytest.fixture()
def gateway(security_context, limiter, resolver, existing_owners):
    async def exists(owner_id: str) -> bool:
        return owner_id in existing_owners

    return Gateway(
        context=security_context,
        limiter=limiter,
        resolver=resolver,
        rules=make_rules(),
        exists_probe=exists,
    )


@pytest_asyncio.fixture()
async def coalescer():
    c = BatchCoalescer(batch_size=10, batch_delay_ms=20)
    yield c
    await c.close()


@pytest_asyncio.fixture()
async def client(gateway, coalescer):
    """HTTP client with the app's gateway and coalescer overridden.

    Learn: The global rate-limit middleware reads app.state.gateway
    directly (it runs before dependency resolution), so the test gateway
    is installed there too and restored afterwards.
    """
    original_gateway = app.state.gateway
    app.state.gateway = gateway
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_coalescer] = lambda: coalescer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.gateway = original_gateway
