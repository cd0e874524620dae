from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.errors import GoogleOAuthError
from app.routes.gmail_auth import router as gmail_auth_router
from app.services.google_oauth_service import TokenResponse
from app.services.oauth_state_service import oauth_state_service
from app.services.token_service import TokenService
from tests.fakes import FakeOAuthClient, InMemoryTokenStore, make_connection


def _create_app(apply_auth_override=None):
    app = FastAPI()
    if apply_auth_override:
        apply_auth_override(app)
    app.include_router(gmail_auth_router)
    return app


class FakeGoogleOAuth:
    def __init__(
        self,
        token_data: dict | None = None,
        exchange_error: Exception | None = None,
        email_error: Exception | None = None,
    ):
        self.token_data = token_data or {
            "access_token": "new-access",
            "refresh_token": "new-refresh",
            "expires_in": 3600,
        }
        self.exchange_error = exchange_error
        self.email_error = email_error
        self.codes: list[str] = []

    async def exchange_code_for_tokens(self, code: str) -> TokenResponse:
        self.codes.append(code)
        if self.exchange_error:
            raise self.exchange_error
        return TokenResponse(self.token_data)

    async def get_account_email(self, access_token: str) -> str:
        if self.email_error:
            raise self.email_error
        return "candidate@gmail.com"


@pytest.fixture
def store():
    return InMemoryTokenStore()


@pytest.fixture
def patched_tokens(monkeypatch, store):
    service = TokenService(store=store, oauth_client=FakeOAuthClient(), expiry_margin_seconds=60)
    monkeypatch.setattr("app.routes.gmail_auth.oauth.token_service", service)
    monkeypatch.setattr("app.routes.gmail_auth.status.token_service", service)
    return service


def test_get_oauth_url_success(apply_auth_override):
    client = TestClient(_create_app(apply_auth_override))

    response = client.get("/api/auth/gmail")

    assert response.status_code == 200
    payload = response.json()
    query = parse_qs(urlparse(payload["authUrl"]).query)
    assert query["state"] == [payload["state"]]
    assert query["access_type"] == ["offline"]
    assert "https://www.googleapis.com/auth/gmail.readonly" in query["scope"][0]
    assert oauth_state_service.validate_state(payload["state"]) == "user-123"


def test_get_oauth_url_requires_session():
    client = TestClient(_create_app())

    response = client.get("/api/auth/gmail")

    assert response.status_code == 401


def test_callback_success_stores_connection(monkeypatch, store, patched_tokens):
    google = FakeGoogleOAuth()
    monkeypatch.setattr("app.routes.gmail_auth.oauth.google_oauth_service", google)
    state = oauth_state_service.generate_state("user-123")

    client = TestClient(_create_app())
    response = client.get("/api/auth/gmail/callback", params={"code": "abc", "state": state})

    assert response.status_code == 200
    assert "Gmail Connected Successfully" in response.text
    assert google.codes == ["abc"]
    connection = store.connections["user-123"]
    assert connection.connected is True
    assert connection.email == "candidate@gmail.com"
    assert connection.refresh_token == "new-refresh"


def test_callback_missing_code():
    client = TestClient(_create_app())

    response = client.get("/api/auth/gmail/callback", params={"state": "whatever"})

    assert response.status_code == 400
    assert "Missing authorization code" in response.text


def test_callback_user_denied():
    client = TestClient(_create_app())

    response = client.get("/api/auth/gmail/callback", params={"error": "access_denied"})

    assert response.status_code == 400
    assert "access_denied" in response.text


def test_callback_invalid_state(monkeypatch, store, patched_tokens):
    google = FakeGoogleOAuth()
    monkeypatch.setattr("app.routes.gmail_auth.oauth.google_oauth_service", google)

    client = TestClient(_create_app())
    response = client.get("/api/auth/gmail/callback", params={"code": "abc", "state": "forged"})

    assert response.status_code == 400
    assert google.codes == []
    assert store.saves == []


def test_callback_without_refresh_token(monkeypatch, store, patched_tokens):
    google = FakeGoogleOAuth(token_data={"access_token": "new-access", "expires_in": 3600})
    monkeypatch.setattr("app.routes.gmail_auth.oauth.google_oauth_service", google)
    state = oauth_state_service.generate_state("user-123")

    client = TestClient(_create_app())
    response = client.get("/api/auth/gmail/callback", params={"code": "abc", "state": state})

    assert response.status_code == 400
    assert "Failed to obtain tokens" in response.text
    assert store.saves == []


def test_callback_rejected_code(monkeypatch, store, patched_tokens):
    google = FakeGoogleOAuth(
        exchange_error=GoogleOAuthError("Authorization code expired", error_code="invalid_grant")
    )
    monkeypatch.setattr("app.routes.gmail_auth.oauth.google_oauth_service", google)
    state = oauth_state_service.generate_state("user-123")

    client = TestClient(_create_app())
    response = client.get("/api/auth/gmail/callback", params={"code": "abc", "state": state})

    assert response.status_code == 400
    assert "Authorization code expired" in response.text


def test_callback_unreadable_account_email(monkeypatch, store, patched_tokens):
    google = FakeGoogleOAuth(
        email_error=GoogleOAuthError(
            "Invalid response format from Google", error_code="invalid_response"
        )
    )
    monkeypatch.setattr("app.routes.gmail_auth.oauth.google_oauth_service", google)
    state = oauth_state_service.generate_state("user-123")

    client = TestClient(_create_app())
    response = client.get("/api/auth/gmail/callback", params={"code": "abc", "state": state})

    assert response.status_code == 502
    assert "Connection Failed" in response.text
    assert store.saves == []


def test_status_connected(apply_auth_override, store, patched_tokens):
    store.connections["user-123"] = make_connection()
    client = TestClient(_create_app(apply_auth_override))

    response = client.get("/api/auth/status")

    assert response.status_code == 200
    assert response.json() == {"connected": True, "email": "candidate@gmail.com"}


def test_status_after_failed_refresh(monkeypatch, apply_auth_override, store):
    store.connections["user-123"] = make_connection(expires_in_seconds=-10)
    service = TokenService(store=store, oauth_client=FakeOAuthClient(fail_refresh=True))
    monkeypatch.setattr("app.routes.gmail_auth.status.token_service", service)
    client = TestClient(_create_app(apply_auth_override))

    response = client.get("/api/auth/status")

    assert response.json() == {
        "connected": False,
        "email": "candidate@gmail.com",
        "error": "gmail_refresh_failed",
    }
    assert store.connections["user-123"].connected is False


def test_disconnect(apply_auth_override, store, patched_tokens):
    store.connections["user-123"] = make_connection()
    client = TestClient(_create_app(apply_auth_override))

    response = client.post("/api/auth/disconnect")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert store.connections["user-123"].connected is False


def test_refresh_without_connection(apply_auth_override, patched_tokens):
    client = TestClient(_create_app(apply_auth_override))

    response = client.post("/api/auth/refresh")

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "gmail_not_connected"


def test_refresh_rejected_by_google(monkeypatch, apply_auth_override, store):
    store.connections["user-123"] = make_connection()
    service = TokenService(store=store, oauth_client=FakeOAuthClient(fail_refresh=True))
    monkeypatch.setattr("app.routes.gmail_auth.status.token_service", service)
    client = TestClient(_create_app(apply_auth_override))

    response = client.post("/api/auth/refresh")

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "gmail_refresh_failed"


def test_refresh_success(apply_auth_override, store, patched_tokens):
    store.connections["user-123"] = make_connection()
    client = TestClient(_create_app(apply_auth_override))

    response = client.post("/api/auth/refresh")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert store.connections["user-123"].access_token == "fresh-access-1"
