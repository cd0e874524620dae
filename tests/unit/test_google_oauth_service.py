import httpx
import pytest

from app.errors import GoogleOAuthError
from app.services import google_oauth_service as google_oauth_module
from app.services.google_oauth_service import GoogleOAuthService


@pytest.fixture
def userinfo(monkeypatch):
    """Route the service's httpx clients through a canned userinfo response."""
    real_client = httpx.AsyncClient
    canned: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer access-1"
        return canned["response"]

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(google_oauth_module.httpx, "AsyncClient", client_factory)
    return canned


@pytest.mark.asyncio
async def test_get_account_email(userinfo):
    userinfo["response"] = httpx.Response(200, json={"email": "candidate@gmail.com"})

    assert await GoogleOAuthService().get_account_email("access-1") == "candidate@gmail.com"


@pytest.mark.asyncio
async def test_get_account_email_non_json_body(userinfo):
    userinfo["response"] = httpx.Response(200, text="<html>Service Unavailable</html>")

    with pytest.raises(GoogleOAuthError) as exc_info:
        await GoogleOAuthService().get_account_email("access-1")

    assert exc_info.value.error_code == "invalid_response"


@pytest.mark.asyncio
async def test_get_account_email_without_address(userinfo):
    userinfo["response"] = httpx.Response(200, json=["unexpected"])

    with pytest.raises(GoogleOAuthError) as exc_info:
        await GoogleOAuthService().get_account_email("access-1")

    assert exc_info.value.error_code == "no_email"


@pytest.mark.asyncio
async def test_get_account_email_http_error(userinfo):
    userinfo["response"] = httpx.Response(401, json={"error": "invalid_token"})

    with pytest.raises(GoogleOAuthError) as exc_info:
        await GoogleOAuthService().get_account_email("access-1")

    assert exc_info.value.error_code == "userinfo_failed"
