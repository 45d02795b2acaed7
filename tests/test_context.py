"""Scoped security context tests — bind/clear pairing on dedicated connections."""

import asyncio

import pytest
from structlog.testing import capture_logs

from ownergate.gateway.context import (
    CONTEXT_SETTING,
    CONTEXT_VALUE,
    SCOPE_SETTING,
    current_scope,
)
from ownergate.gateway.errors import ServiceUnavailableError


@pytest.mark.asyncio
async def test_enter_binds_on_its_own_connection(security_context, fake_engine):
    handle = await security_context.enter("did:issuer:u1")

    assert len(fake_engine.connections) == 1
    conn = fake_engine.connections[0]
    assert handle.connection is conn
    assert handle.session.connection is conn
    assert handle.acting_as_id == "did:issuer:u1"
    _, params = conn.executed[0]
    assert params == {
        "user_setting": SCOPE_SETTING,
        "user_id": "did:issuer:u1",
        "context_setting": CONTEXT_SETTING,
        "context_value": CONTEXT_VALUE,
    }
    assert conn.commits == 1
    assert current_scope() is handle

    await security_context.exit(handle)


@pytest.mark.asyncio
async def test_exit_clears_and_releases(security_context, fake_engine):
    handle = await security_context.enter("did:issuer:u1")
    assert await security_context.exit(handle) is True

    conn = fake_engine.connections[0]
    assert conn.cleared
    assert conn.commits == 2
    assert conn.closed
    assert not conn.invalidated
    assert handle.session.closed
    assert current_scope() is None


@pytest.mark.asyncio
async def test_concurrent_scopes_never_share_a_connection(security_context, fake_engine):
    async def one(caller_id):
        async with security_context.scope(caller_id) as handle:
            await asyncio.sleep(0)
            assert current_scope() is handle
            return handle.connection

    conns = await asyncio.gather(one("did:issuer:a"), one("did:issuer:b"), one("user-42"))

    assert len({id(c) for c in conns}) == 3
    assert sorted(c.bound_ids[0] for c in conns) == ["did:issuer:a", "did:issuer:b", "user-42"]
    assert fake_engine.open_connections == []


@pytest.mark.asyncio
async def test_scope_exits_when_body_raises(security_context, fake_engine):
    with pytest.raises(RuntimeError):
        async with security_context.scope("did:issuer:u1"):
            raise RuntimeError("handler blew up")

    conn = fake_engine.connections[0]
    assert conn.cleared
    assert conn.closed
    assert current_scope() is None


@pytest.mark.asyncio
async def test_enter_failure_is_service_unavailable(security_context, fake_engine):
    fake_engine.fail_connect = True
    with pytest.raises(ServiceUnavailableError) as exc_info:
        await security_context.enter("did:issuer:u1")
    assert exc_info.value.http_status == 500
    assert exc_info.value.retryable is True
    assert current_scope() is None


@pytest.mark.asyncio
async def test_bind_failure_invalidates_connection(security_context, fake_engine):
    fake_engine.fail_bind = True
    with capture_logs() as logs:
        with pytest.raises(ServiceUnavailableError):
            await security_context.enter("did:issuer:u1")

    conn = fake_engine.connections[0]
    assert conn.invalidated
    assert conn.closed
    assert any(e["event"] == "gateway.scope.enter_failed" for e in logs)


@pytest.mark.asyncio
async def test_exit_failure_is_logged_not_raised(security_context, fake_engine):
    handle = await security_context.enter("did:issuer:u1")
    fake_engine.fail_clear = True

    with capture_logs() as logs:
        cleared = await security_context.exit(handle)

    assert cleared is False
    conn = fake_engine.connections[0]
    assert conn.invalidated
    assert conn.closed
    failure = next(e for e in logs if e["event"] == "gateway.scope.exit_failed")
    assert failure["log_level"] == "error"
    assert failure["alarm"] is True


@pytest.mark.asyncio
async def test_repeated_exit_is_a_noop(security_context, fake_engine):
    handle = await security_context.enter("did:issuer:u1")
    await security_context.exit(handle)

    with capture_logs() as logs:
        assert await security_context.exit(handle) is True

    assert fake_engine.connections[0].commits == 2
    assert [e["event"] for e in logs] == ["gateway.scope.exit_repeated"]


@pytest.mark.asyncio
async def test_exit_none_is_a_noop(security_context):
    assert await security_context.exit(None) is True


@pytest.mark.asyncio
async def test_logs_mask_the_acting_as_id(security_context):
    with capture_logs() as logs:
        handle = await security_context.enter("did:issuer:abcdef123456")
        await security_context.exit(handle)

    entered = next(e for e in logs if e["event"] == "gateway.scope.entered")
    assert entered["acting_as"] == "did:...3456"
