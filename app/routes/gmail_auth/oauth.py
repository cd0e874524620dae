"""
Gmail OAuth routes for the connection flow.
"""

from html import escape

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse

from app.auth.verify import auth_dependency, user_id_from_claims
from app.errors import DatabaseError, GoogleOAuthError, OAuthStateError, TokenServiceError
from app.infrastructure.observability.logging import get_logger
from app.models.api.oauth_response import AuthURLResponse
from app.services.google_oauth_service import google_oauth_service
from app.services.oauth_state_service import oauth_state_service
from app.services.token_service import token_service

logger = get_logger(__name__)

router = APIRouter()


def _callback_page(title: str, message: str, status_code: int) -> HTMLResponse:
    """Small self-closing page shown in the OAuth popup."""
    close_script = (
        "<script>setTimeout(function () { window.close(); }, 2000);</script>"
        if status_code == 200
        else ""
    )
    body = (
        '<!doctype html><html><head><meta name="viewport" content="width=device-width, initial-scale=1"/>'
        f"<title>{escape(title)}</title></head>"
        '<body style="font-family:sans-serif;text-align:center;padding:40px;">'
        f"<h2>{escape(title)}</h2><p>{escape(message)}</p>{close_script}</body></html>"
    )
    return HTMLResponse(content=body, status_code=status_code)


@router.get("/gmail", response_model=AuthURLResponse)
async def get_oauth_url(claims: dict = Depends(auth_dependency)):
    """
    Generate the Google OAuth authorization URL for Gmail read access.

    Returns:
        AuthURLResponse: OAuth URL and signed state parameter

    Raises:
        401: Invalid authentication token
        500: OAuth URL generation failed
    """
    user_id = user_id_from_claims(claims)

    try:
        state = oauth_state_service.generate_state(user_id)
        auth_url = google_oauth_service.generate_oauth_url(state)
    except (OAuthStateError, GoogleOAuthError) as e:
        logger.error("Failed to generate Gmail OAuth URL", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate Gmail authorization URL",
        ) from None

    logger.info("Gmail OAuth URL generated", user_id=user_id, url_length=len(auth_url))
    return AuthURLResponse(auth_url=auth_url, state=state)


@router.get("/gmail/callback", response_class=HTMLResponse)
async def oauth_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
):
    """
    Google redirect target: exchange the code and store the connection.

    The browser arrives here without a session; the signed state tells us
    which user started the flow.

    Raises:
        400: Missing code, bad state, rejected code, or no refresh token issued
    """
    if error:
        logger.warning("Gmail OAuth denied by user", error=error)
        return _callback_page("Connection Failed", f"Google returned: {error}", 400)

    if not code:
        logger.warning("OAuth callback missing authorization code")
        return _callback_page("Connection Failed", "Missing authorization code", 400)

    try:
        user_id = oauth_state_service.validate_state(state or "")
    except OAuthStateError as e:
        return _callback_page("Connection Failed", str(e), 400)

    try:
        token_response = await google_oauth_service.exchange_code_for_tokens(code)
    except GoogleOAuthError as e:
        logger.error(
            "Gmail code exchange failed",
            user_id=user_id,
            error_code=e.error_code,
        )
        return _callback_page("Connection Failed", str(e), 400)

    if not token_response.access_token or not token_response.refresh_token:
        logger.warning(
            "Token response incomplete",
            user_id=user_id,
            has_refresh_token=bool(token_response.refresh_token),
        )
        return _callback_page("Connection Failed", "Failed to obtain tokens", 400)

    try:
        email = await google_oauth_service.get_account_email(token_response.access_token)
        await token_service.connect(user_id, token_response, email)
    except GoogleOAuthError as e:
        logger.error("Could not read Gmail account address", user_id=user_id, error=str(e))
        return _callback_page("Connection Failed", str(e), 502)
    except (TokenServiceError, DatabaseError) as e:
        logger.error("Failed to store Gmail connection", user_id=user_id, error=str(e))
        return _callback_page("Connection Failed", "Could not save the connection", 500)

    logger.info("Gmail connected", user_id=user_id)
    return _callback_page(
        "Gmail Connected Successfully",
        "You can now close this window and return to the app.",
        200,
    )
