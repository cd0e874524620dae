import asyncio
from datetime import UTC, datetime

import pytest

from app.errors import DisconnectedError, RefreshFailedError, TokenServiceError
from app.services import token_service as token_service_module
from app.services.google_oauth_service import TokenResponse
from app.services.token_service import TokenService
from tests.fakes import FakeOAuthClient, InMemoryTokenStore, make_connection


def _service(store, client, margin=60) -> TokenService:
    return TokenService(store=store, oauth_client=client, expiry_margin_seconds=margin)


@pytest.mark.asyncio
async def test_valid_token_is_reused(token_store, oauth_client):
    service = _service(token_store, oauth_client)

    token = await service.acquire_valid_access_token("user-123")

    assert token == "stored-access"
    assert oauth_client.refresh_calls == 0
    assert token_store.saves == []


@pytest.mark.asyncio
async def test_token_inside_margin_is_refreshed(oauth_client):
    store = InMemoryTokenStore([make_connection(expires_in_seconds=30)])
    service = _service(store, oauth_client)

    token = await service.acquire_valid_access_token("user-123")

    assert token == "fresh-access-1"
    saved = store.connections["user-123"]
    assert saved.access_token == "fresh-access-1"
    assert saved.refresh_token == "stored-refresh"
    assert saved.connected is True
    assert saved.expires_at > datetime.now(UTC)


@pytest.mark.asyncio
async def test_refresh_failure_disconnects(oauth_client):
    store = InMemoryTokenStore([make_connection(expires_in_seconds=-10)])
    service = _service(store, FakeOAuthClient(fail_refresh=True))

    with pytest.raises(RefreshFailedError):
        await service.acquire_valid_access_token("user-123")

    connection = store.connections["user-123"]
    assert connection.connected is False
    assert connection.access_token is None
    assert connection.refresh_token is None

    # Next call sees a disconnected user, not a second refresh attempt
    with pytest.raises(DisconnectedError):
        await service.acquire_valid_access_token("user-123")


@pytest.mark.asyncio
async def test_missing_refresh_token_disconnects(oauth_client):
    store = InMemoryTokenStore([make_connection(expires_in_seconds=-10, refresh_token=None)])
    service = _service(store, oauth_client)

    with pytest.raises(RefreshFailedError):
        await service.acquire_valid_access_token("user-123")

    assert oauth_client.refresh_calls == 0
    assert store.connections["user-123"].connected is False


@pytest.mark.asyncio
async def test_refresh_timeout_disconnects(monkeypatch):
    monkeypatch.setattr(token_service_module, "REFRESH_TIMEOUT_SECONDS", 0.05)
    store = InMemoryTokenStore([make_connection(expires_in_seconds=-10)])
    service = _service(store, FakeOAuthClient(delay=1.0))

    with pytest.raises(RefreshFailedError):
        await service.acquire_valid_access_token("user-123")

    assert store.connections["user-123"].connected is False


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    store = InMemoryTokenStore([make_connection(expires_in_seconds=5)])
    client = FakeOAuthClient(delay=0.05)
    service = _service(store, client)

    tokens = await asyncio.gather(
        *(service.acquire_valid_access_token("user-123") for _ in range(5))
    )

    assert client.refresh_calls == 1
    assert set(tokens) == {"fresh-access-1"}
    assert "user-123" not in service._locks


@pytest.mark.asyncio
async def test_unknown_user_is_disconnected(oauth_client):
    service = _service(InMemoryTokenStore(), oauth_client)

    with pytest.raises(DisconnectedError):
        await service.acquire_valid_access_token("nobody")


@pytest.mark.asyncio
async def test_disconnected_connection_is_not_refreshed(oauth_client):
    store = InMemoryTokenStore([make_connection(connected=False)])
    service = _service(store, oauth_client)

    with pytest.raises(DisconnectedError):
        await service.acquire_valid_access_token("user-123")
    assert oauth_client.refresh_calls == 0


@pytest.mark.asyncio
async def test_force_refresh_ignores_expiry(token_store, oauth_client):
    service = _service(token_store, oauth_client)

    connection = await service.force_refresh("user-123")

    assert connection.access_token == "fresh-access-1"
    assert oauth_client.refresh_calls == 1


@pytest.mark.asyncio
async def test_status_reports_refresh_failure():
    store = InMemoryTokenStore([make_connection(expires_in_seconds=-10)])
    service = _service(store, FakeOAuthClient(fail_refresh=True))

    status = await service.get_status("user-123")

    assert status == {
        "connected": False,
        "email": "candidate@gmail.com",
        "error": "gmail_refresh_failed",
    }


@pytest.mark.asyncio
async def test_status_connected(token_store, oauth_client):
    service = _service(token_store, oauth_client)

    assert await service.get_status("user-123") == {
        "connected": True,
        "email": "candidate@gmail.com",
    }
    assert await service.get_status("nobody") == {"connected": False, "email": None}


@pytest.mark.asyncio
async def test_disconnect_revokes_and_clears(token_store, oauth_client):
    service = _service(token_store, oauth_client)

    assert await service.disconnect("user-123") is True

    assert oauth_client.revoked == ["stored-refresh"]
    connection = token_store.connections["user-123"]
    assert connection.connected is False
    assert connection.refresh_token is None
    assert await service.disconnect("nobody") is False


@pytest.mark.asyncio
async def test_connect_requires_refresh_token(oauth_client):
    store = InMemoryTokenStore()
    service = _service(store, oauth_client)

    response = TokenResponse({"access_token": "a", "expires_in": 3600})
    with pytest.raises(TokenServiceError):
        await service.connect("user-123", response, "candidate@gmail.com")
    assert store.saves == []

    response.refresh_token = "r"
    connection = await service.connect("user-123", response, "candidate@gmail.com")
    assert connection.is_usable()
    assert store.connections["user-123"].email == "candidate@gmail.com"
