"""Profile API tests — the gateway as seen through HTTP.

Learn: The service layer is patched out (monkeypatch on ProfileService)
so these tests exercise routing, the gateway decision, error rendering,
and scope cleanup, not SQL. FakeEngine still records the bind/clear on
every authorized request.
"""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from ownergate.services.profile_service import ProfileConflict, ProfileService
from tests.fakes import make_rules, make_token

U1 = "did:issuer:u1"


def auth(caller_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token({'sub': caller_id})}"}


def profile_row(user_id: str, display_name: str = "Ada"):
    return SimpleNamespace(
        id=uuid.uuid4(),
        user_id=user_id,
        display_name=display_name,
        email=None,
        wallet_address=None,
        bio=None,
        created_at=datetime.now(timezone.utc),
    )


# ═══════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_get_own_profile(client, monkeypatch, fake_engine):
    get_profile = AsyncMock(return_value=profile_row(U1))
    monkeypatch.setattr(ProfileService, "get_profile", get_profile)

    r = await client.get(f"/api/v1/profiles/{U1}", headers=auth(U1))

    assert r.status_code == 200
    assert r.json()["user_id"] == U1
    get_profile.assert_awaited_once_with(U1)
    assert fake_engine.connections[0].bound_ids == [U1]
    assert fake_engine.open_connections == []


@pytest.mark.asyncio
async def test_get_without_token_is_401(client):
    r = await client.get(f"/api/v1/profiles/{U1}")
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthenticated", "message": "Authentication required"}


@pytest.mark.asyncio
async def test_get_someone_elses_profile_is_403(client, fake_engine):
    r = await client.get("/api/v1/profiles/did:issuer:u2", headers=auth(U1))
    assert r.status_code == 403
    assert r.json() == {"error": "Forbidden", "message": "Access denied"}
    assert fake_engine.connections == []


@pytest.mark.asyncio
async def test_missing_profile_is_404_and_scope_released(client, monkeypatch, fake_engine):
    monkeypatch.setattr(ProfileService, "get_profile", AsyncMock(return_value=None))

    r = await client.get(f"/api/v1/profiles/{U1}", headers=auth(U1))

    assert r.status_code == 404
    assert fake_engine.connections[0].cleared
    assert fake_engine.open_connections == []


@pytest.mark.asyncio
async def test_handler_crash_still_releases_scope(client, monkeypatch, fake_engine):
    monkeypatch.setattr(
        ProfileService, "get_profile", AsyncMock(side_effect=RuntimeError("boom"))
    )

    with pytest.raises(RuntimeError):
        await client.get(f"/api/v1/profiles/{U1}", headers=auth(U1))

    assert fake_engine.connections[0].cleared
    assert fake_engine.open_connections == []


@pytest.mark.asyncio
async def test_read_rate_limit_returns_429(client, gateway):
    gateway.rules = make_rules(read=1)

    await client.get(f"/api/v1/profiles/{U1}")
    r = await client.get(f"/api/v1/profiles/{U1}")

    assert r.status_code == 429
    assert r.json()["error"] == "RateLimited"
    assert r.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" in r.headers
    assert "X-Request-ID" in r.headers


@pytest.mark.asyncio
async def test_storage_down_is_500_without_details(client, fake_engine):
    fake_engine.fail_connect = True

    r = await client.get(f"/api/v1/profiles/{U1}", headers=auth(U1))

    assert r.status_code == 500
    assert r.json() == {
        "error": "ServiceUnavailable",
        "message": "Service temporarily unavailable",
    }


# ═══════════════════════════════════════════════════════════
# Create (bootstrap)
# ═══════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_bootstrap_create_without_token(client, monkeypatch, existing_owners):
    create = AsyncMock(return_value=profile_row("did:issuer:new1"))
    monkeypatch.setattr(ProfileService, "create_profile", create)
    body = {"user_id": "did:issuer:new1", "display_name": "Ada"}

    r = await client.post("/api/v1/profiles", json=body)
    assert r.status_code == 201
    assert create.await_args.kwargs["user_id"] == "did:issuer:new1"

    existing_owners.add("did:issuer:new1")
    r = await client.post("/api/v1/profiles", json=body)
    assert r.status_code == 403
    assert r.json()["error"] == "Forbidden"


@pytest.mark.asyncio
async def test_create_conflict_is_409(client, monkeypatch):
    monkeypatch.setattr(
        ProfileService, "create_profile", AsyncMock(side_effect=ProfileConflict(U1))
    )
    r = await client.post(
        "/api/v1/profiles", json={"user_id": U1, "display_name": "Ada"}, headers=auth(U1)
    )
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_create_with_bad_body_is_400(client):
    r = await client.post("/api/v1/profiles", json={"user_id": U1, "display_name": "<bad>!"})
    assert r.status_code == 400
    assert r.json() == {"error": "ValidationFailed", "message": "Invalid request"}


# ═══════════════════════════════════════════════════════════
# Writes
# ═══════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_patch_own_profile(client, monkeypatch):
    update = AsyncMock(return_value=profile_row(U1, display_name="Grace"))
    monkeypatch.setattr(ProfileService, "update_profile", update)

    r = await client.patch(
        f"/api/v1/profiles/{U1}", json={"display_name": "Grace"}, headers=auth(U1)
    )

    assert r.status_code == 200
    assert r.json()["display_name"] == "Grace"
    update.assert_awaited_once_with(U1, display_name="Grace")


@pytest.mark.asyncio
async def test_patch_someone_else_is_403(client):
    r = await client.patch(
        "/api/v1/profiles/did:issuer:u2", json={"bio": "hi"}, headers=auth(U1)
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_award_points_goes_through_coalescer(client, monkeypatch, coalescer):
    monkeypatch.setattr(ProfileService, "add_points", AsyncMock(return_value=15))

    r = await client.post(
        f"/api/v1/profiles/{U1}/points", json={"points": 5}, headers=auth(U1)
    )

    assert r.status_code == 200
    assert r.json() == {"user_id": U1, "total_points": 15}
    assert coalescer.stats.flushes == 1


@pytest.mark.asyncio
async def test_award_points_unknown_profile_is_404(client, monkeypatch):
    monkeypatch.setattr(
        ProfileService, "add_points", AsyncMock(side_effect=LookupError(U1))
    )
    r = await client.post(
        f"/api/v1/profiles/{U1}/points", json={"points": 5}, headers=auth(U1)
    )
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Delete
# ═══════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_delete_own_profile(client, monkeypatch, fake_engine):
    remove = AsyncMock(return_value=True)
    monkeypatch.setattr(ProfileService, "delete_profile", remove)

    r = await client.delete(f"/api/v1/profiles/{U1}", headers=auth(U1))

    assert r.status_code == 204
    assert r.content == b""
    remove.assert_awaited_once_with(U1)
    assert fake_engine.connections[0].bound_ids == [U1]
    assert fake_engine.open_connections == []


@pytest.mark.asyncio
async def test_delete_someone_else_is_403(client, monkeypatch, fake_engine):
    remove = AsyncMock(return_value=True)
    monkeypatch.setattr(ProfileService, "delete_profile", remove)

    r = await client.delete("/api/v1/profiles/did:issuer:u2", headers=auth(U1))

    assert r.status_code == 403
    remove.assert_not_awaited()
    assert fake_engine.connections == []


@pytest.mark.asyncio
async def test_delete_without_token_is_401(client):
    r = await client.delete(f"/api/v1/profiles/{U1}")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_delete_missing_profile_is_404(client, monkeypatch):
    monkeypatch.setattr(ProfileService, "delete_profile", AsyncMock(return_value=False))

    r = await client.delete(f"/api/v1/profiles/{U1}", headers=auth(U1))

    assert r.status_code == 404


@pytest.mark.asyncio
async def test_delete_has_its_own_rate_limit(client, monkeypatch, gateway):
    monkeypatch.setattr(ProfileService, "delete_profile", AsyncMock(return_value=True))
    monkeypatch.setattr(ProfileService, "get_profile", AsyncMock(return_value=profile_row(U1)))
    gateway.rules = make_rules(delete=1)

    assert (await client.delete(f"/api/v1/profiles/{U1}", headers=auth(U1))).status_code == 204
    r = await client.delete(f"/api/v1/profiles/{U1}", headers=auth(U1))
    assert r.status_code == 429
    assert r.json()["error"] == "RateLimited"

    # Reads are counted separately.
    assert (await client.get(f"/api/v1/profiles/{U1}", headers=auth(U1))).status_code == 200
