"""
Google OAuth Service for read-only Gmail access.
Handles OAuth URL generation, token exchange, refresh, revocation and the
account email lookup used when a connection is created.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx

from app.config import settings
from app.errors import GoogleOAuthError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# OAuth configuration
GOOGLE_OAUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",  # Read emails
    "https://www.googleapis.com/auth/userinfo.email",  # Account address
]

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class TokenResponse:
    """Structured representation of OAuth token response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")
        self.token_type = data.get("token_type", "Bearer")
        self.expires_in = data.get("expires_in")
        self.scope = data.get("scope", "")

        # Calculate expiration timestamp
        if self.expires_in:
            self.expires_at = datetime.now(UTC) + timedelta(seconds=int(self.expires_in))
        else:
            self.expires_at = None

    def is_valid(self) -> bool:
        """Check if token response contains required fields."""
        return bool(self.access_token and self.token_type)

    def has_gmail_access(self) -> bool:
        return "gmail.readonly" in self.scope


class GoogleOAuthService:
    """
    Service for Google OAuth 2.0 operations against the Gmail read-only scope.

    Handles OAuth URL generation, token exchange, refresh, and revocation
    with error mapping and retry logic.
    """

    def __init__(self):
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = settings.gmail_redirect_uri()
        self._validate_config()

    def _validate_config(self) -> None:
        """Validate Google OAuth configuration."""
        if not self.client_id:
            raise GoogleOAuthError("GOOGLE_CLIENT_ID not configured")
        if not self.client_secret:
            raise GoogleOAuthError("GOOGLE_CLIENT_SECRET not configured")
        if not self.redirect_uri:
            raise GoogleOAuthError("GOOGLE_REDIRECT_URI not configured")

        logger.info(
            "Google OAuth service initialized",
            client_id_preview=self.client_id[:12] + "...",
            redirect_uri=self.redirect_uri,
            total_scopes=len(GMAIL_SCOPES),
        )

    async def _post_with_retry(self, url: str, data: dict, operation: str) -> httpx.Response:
        """
        Perform POST request with retry/backoff handling.

        Args:
            url: Target URL
            data: Form data payload
            operation: Operation name for logging context
        """
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.post(url, data=data, headers=headers)

                    if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        wait_time = BACKOFF_FACTOR**attempt
                        logger.warning(
                            "Google OAuth transient status",
                            operation=operation,
                            status_code=response.status_code,
                            attempt=attempt,
                            wait_time=wait_time,
                        )
                        await asyncio.sleep(wait_time)
                        continue

                    return response

                except httpx.RequestError as exc:
                    if attempt == MAX_RETRIES:
                        raise

                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Google OAuth request error, retrying",
                        operation=operation,
                        attempt=attempt,
                        wait_time=wait_time,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(wait_time)

        raise GoogleOAuthError(f"{operation} failed: Unknown error")

    def generate_oauth_url(self, state: str) -> str:
        """
        Generate Google OAuth authorization URL for Gmail read access.

        Args:
            state: CSRF protection state parameter

        Returns:
            str: Complete OAuth authorization URL
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(GMAIL_SCOPES),
            "response_type": "code",
            "state": state,
            "access_type": "offline",  # Request refresh token
            "prompt": "consent",  # Force consent screen to get refresh token
            "include_granted_scopes": "true",
        }

        oauth_url = f"{GOOGLE_OAUTH_BASE_URL}?{urlencode(params)}"

        logger.info("OAuth URL generated", url_length=len(oauth_url))

        return oauth_url

    async def exchange_code_for_tokens(self, authorization_code: str) -> TokenResponse:
        """
        Exchange authorization code for access and refresh tokens.

        Args:
            authorization_code: Authorization code from OAuth callback

        Returns:
            TokenResponse: Parsed token response with access/refresh tokens

        Raises:
            GoogleOAuthError: If token exchange fails
        """
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": authorization_code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }

        logger.info("Exchanging authorization code for Gmail tokens")

        try:
            response = await self._post_with_retry(GOOGLE_TOKEN_URL, data, operation="code_exchange")
        except httpx.RequestError as e:
            logger.error(
                "Network error during token exchange",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GoogleOAuthError(f"Network error during token exchange: {e}") from e

        return self._handle_token_response(response, "code_exchange")

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Refresh access token using refresh token.

        Args:
            refresh_token: Valid refresh token

        Returns:
            TokenResponse: New access token (may include new refresh token)

        Raises:
            GoogleOAuthError: If token refresh fails
        """
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        logger.info("Refreshing Gmail access token")

        try:
            response = await self._post_with_retry(GOOGLE_TOKEN_URL, data, operation="token_refresh")
        except httpx.RequestError as e:
            logger.error(
                "Network error during token refresh",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GoogleOAuthError(f"Network error during token refresh: {e}") from e

        token_response = self._handle_token_response(response, "token_refresh")

        # Google usually omits the refresh token on refresh; keep the existing one
        if not token_response.refresh_token:
            token_response.refresh_token = refresh_token
            logger.debug("Preserved existing refresh token")

        return token_response

    async def revoke_token(self, token: str) -> bool:
        """
        Revoke access or refresh token.

        Returns:
            bool: True if revocation successful, False otherwise
        """
        try:
            response = await self._post_with_retry(
                GOOGLE_REVOKE_URL, {"token": token}, operation="token_revocation"
            )
        except httpx.RequestError as e:
            logger.error("Network error during token revocation", error=str(e))
            return False

        success = response.status_code == 200
        if success:
            logger.info("Gmail token revoked successfully")
        else:
            logger.warning(
                "Token revocation failed",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
        return success

    async def get_account_email(self, access_token: str) -> str:
        """
        Look up the Google account address for a freshly issued access token.

        Raises:
            GoogleOAuthError: If the userinfo call fails
        """
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.get(
                    GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
                )
        except httpx.RequestError as e:
            raise GoogleOAuthError(f"Network error fetching account email: {e}") from e

        if not response.is_success:
            logger.error("Userinfo lookup failed", status_code=response.status_code)
            raise GoogleOAuthError(
                f"Could not read account email (HTTP {response.status_code})",
                error_code="userinfo_failed",
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Invalid JSON in userinfo response", response_text=response.text[:200])
            raise GoogleOAuthError(
                "Invalid response format from Google", error_code="invalid_response"
            ) from e

        email = data.get("email") if isinstance(data, dict) else None
        if not email:
            raise GoogleOAuthError("Google account has no email address", error_code="no_email")
        return email

    def _handle_token_response(self, response: httpx.Response, operation: str) -> TokenResponse:
        """
        Handle and validate token response from Google.

        Args:
            response: HTTP response from Google token endpoint
            operation: Operation name for logging (e.g., "code_exchange", "token_refresh")

        Raises:
            GoogleOAuthError: If response is invalid or contains errors
        """
        logger.debug(
            f"Google {operation} response",
            status_code=response.status_code,
            response_size=len(response.text),
        )

        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                logger.error(
                    f"Google {operation} failed with non-JSON response",
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                raise GoogleOAuthError(
                    f"Google OAuth service error (HTTP {response.status_code})"
                ) from None

            error_code = error_data.get("error", "unknown_error")
            logger.error(
                f"Google {operation} failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=error_data.get("error_description", "No description provided"),
            )
            raise GoogleOAuthError(
                self._map_google_error(error_code),
                error_code=error_code,
                response_data=error_data,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse Google {operation} response", error=str(e))
            raise GoogleOAuthError(f"Failed to parse Google response: {e}") from e

        token_response = TokenResponse(data)

        if not token_response.is_valid():
            logger.error(
                f"Invalid token response from Google {operation}",
                has_access_token=bool(token_response.access_token),
                has_refresh_token=bool(token_response.refresh_token),
            )
            raise GoogleOAuthError("Invalid token response from Google")

        logger.info(
            f"Google {operation} successful",
            token_type=token_response.token_type,
            expires_in=token_response.expires_in,
            has_refresh_token=bool(token_response.refresh_token),
            has_gmail_access=token_response.has_gmail_access(),
        )

        return token_response

    def _map_google_error(self, error_code: str) -> str:
        """Map Google OAuth error codes to user-friendly messages."""
        error_messages = {
            "access_denied": "Gmail access was denied. Please connect again and grant the requested permissions.",
            "invalid_grant": "Authorization expired or was revoked. Please reconnect Gmail.",
            "invalid_client": "Gmail connection configuration error. Please contact support.",
            "invalid_request": "Invalid Gmail connection request. Please try again.",
            "unauthorized_client": "Gmail connection not authorized. Please contact support.",
            "unsupported_grant_type": "Gmail connection method not supported. Please contact support.",
            "invalid_scope": "Invalid Gmail permissions requested. Please contact support.",
        }

        return error_messages.get(
            error_code,
            f"Gmail connection failed ({error_code}). Please try again or contact support.",
        )


# Singleton instance for application use
google_oauth_service = GoogleOAuthService()
