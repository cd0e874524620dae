from datetime import UTC, date, datetime, timedelta

import pytest

from app.models.domain.application_domain import ApplicationStatus, ParsedApplication
from app.repositories.application_repository import ApplicationRepository
from app.repositories.connection_repository import ConnectionRepository
from app.services.infrastructure.encryption_service import encrypt_token
from tests.fakes import make_connection


@pytest.mark.asyncio
async def test_connection_tokens_are_encrypted_on_save(monkeypatch):
    captured = {}

    async def fake_execute(query, params=()):
        captured["params"] = params
        return 1

    monkeypatch.setattr("app.repositories.connection_repository.execute_query", fake_execute)

    await ConnectionRepository().save(make_connection())

    params = captured["params"]
    assert params[0] == "user-123"
    assert isinstance(params[3], bytes) and b"stored-access" not in params[3]
    assert isinstance(params[4], bytes) and b"stored-refresh" not in params[4]


@pytest.mark.asyncio
async def test_connection_get_decrypts(monkeypatch):
    expires_at = datetime.now(UTC) + timedelta(hours=1)

    async def fake_fetch_one(query, params=()):
        return {
            "user_id": "user-123",
            "provider": "google",
            "email": "candidate@gmail.com",
            "access_token": memoryview(encrypt_token("access")),
            "refresh_token": encrypt_token("refresh"),
            "expires_at": expires_at,
            "connected": True,
            "updated_at": expires_at,
        }

    monkeypatch.setattr("app.repositories.connection_repository.fetch_one", fake_fetch_one)

    connection = await ConnectionRepository().get("user-123")

    assert connection.access_token == "access"
    assert connection.refresh_token == "refresh"
    assert connection.connected is True


@pytest.mark.asyncio
async def test_undecryptable_tokens_read_as_disconnected(monkeypatch):
    async def fake_fetch_one(query, params=()):
        return {
            "user_id": "user-123",
            "provider": "google",
            "email": None,
            "access_token": b"garbage",
            "refresh_token": b"garbage",
            "expires_at": None,
            "connected": True,
            "updated_at": None,
        }

    monkeypatch.setattr("app.repositories.connection_repository.fetch_one", fake_fetch_one)

    connection = await ConnectionRepository().get("user-123")

    assert connection.connected is False
    assert connection.refresh_token is None
    assert connection.email == ""


@pytest.mark.asyncio
async def test_connection_get_missing_row(monkeypatch):
    async def fake_fetch_one(query, params=()):
        return None

    monkeypatch.setattr("app.repositories.connection_repository.fetch_one", fake_fetch_one)

    assert await ConnectionRepository().get("nobody") is None


@pytest.mark.asyncio
async def test_application_rows_map_to_models(monkeypatch):
    async def fake_fetch_all(query, params=()):
        return [
            {
                "id": "a-1",
                "user_id": "user-123",
                "company": "acme",
                "role": "Backend Engineer",
                "location": None,
                "date_applied": date(2024, 3, 5),
                "status": "interview",
                "source": "email",
                "email_id": "m1",
                "confidence": 0.9,
            }
        ]

    monkeypatch.setattr("app.repositories.application_repository.fetch_all", fake_fetch_all)

    rows = await ApplicationRepository().list_for_user("user-123")

    assert rows[0].date_applied == "2024-03-05"
    assert rows[0].status == ApplicationStatus.INTERVIEW


@pytest.mark.asyncio
async def test_application_save_returns_stored_row(monkeypatch):
    captured = {}

    async def fake_execute(query, params=()):
        captured["params"] = params
        return 1

    monkeypatch.setattr("app.repositories.application_repository.execute_query", fake_execute)
    application = ParsedApplication(
        company="acme",
        role="Backend Engineer",
        date_applied="2024-03-05",
        confidence=0.9,
        email_id="m1",
    )

    stored = await ApplicationRepository().save("user-123", application)

    assert stored.user_id == "user-123"
    assert stored.id == captured["params"][0]
    assert captured["params"][6] == "applied"
