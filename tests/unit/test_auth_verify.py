from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.auth.verify import current_user_id, verify_jwt
from app.config import settings
from app.errors import AuthError


def _token(claims: dict, secret: str | None = None) -> str:
    claims = {"exp": datetime.now(UTC) + timedelta(minutes=5), **claims}
    return jwt.encode(claims, secret or settings.SESSION_SECRET, algorithm="HS256")


def test_verify_jwt_accepts_sub_or_user_id():
    assert verify_jwt(_token({"sub": "user-1"}))["sub"] == "user-1"
    assert verify_jwt(_token({"userId": "user-2"}))["userId"] == "user-2"


def test_verify_jwt_rejects_bad_tokens():
    with pytest.raises(AuthError):
        verify_jwt(_token({"sub": "user-1"}, secret="wrong-secret"))
    with pytest.raises(AuthError):
        verify_jwt(_token({"sub": "user-1", "exp": datetime.now(UTC) - timedelta(minutes=1)}))
    with pytest.raises(AuthError):
        verify_jwt(_token({"email": "a@b.c"}))


def _client() -> TestClient:
    app = FastAPI()

    @app.get("/me")
    def me(user_id: str = Depends(current_user_id)):
        return {"userId": user_id}

    return TestClient(app)


def test_protected_route_requires_bearer_token():
    client = _client()

    response = client.get("/me")

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "unauthenticated"


def test_protected_route_with_valid_token():
    client = _client()

    response = client.get("/me", headers={"Authorization": f"Bearer {_token({'userId': 'u-9'})}"})

    assert response.status_code == 200
    assert response.json() == {"userId": "u-9"}
