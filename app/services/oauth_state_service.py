"""
OAuth State Service for secure OAuth flow management.
State is a short-lived HS256 token signed with SESSION_SECRET that carries the
user id through Google's redirect, so the callback needs no session and no
server-side storage.
"""

import secrets
from datetime import UTC, datetime, timedelta

import jwt

from app.config import settings
from app.errors import OAuthStateError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATE_ALGORITHM = "HS256"
STATE_PURPOSE = "gmail_oauth_state"
NONCE_BYTES = 16


class OAuthStateService:
    """Generates and validates OAuth state parameters for CSRF protection."""

    def __init__(self, secret: str | None = None, ttl_seconds: int | None = None):
        self._secret = secret or settings.SESSION_SECRET
        self._ttl_seconds = ttl_seconds or settings.OAUTH_STATE_TTL_SECONDS

    def generate_state(self, user_id: str) -> str:
        """
        Generate a signed state parameter bound to user_id.

        Args:
            user_id: User initiating the OAuth flow

        Returns:
            str: Opaque state to pass to the authorization URL
        """
        if not user_id:
            raise OAuthStateError("user_id is required to generate state")

        now = datetime.now(UTC)
        claims = {
            "sub": user_id,
            "purpose": STATE_PURPOSE,
            "nonce": secrets.token_urlsafe(NONCE_BYTES),
            "iat": now,
            "exp": now + timedelta(seconds=self._ttl_seconds),
        }
        state = jwt.encode(claims, self._secret, algorithm=STATE_ALGORITHM)

        logger.info("OAuth state generated", user_id=user_id, ttl_seconds=self._ttl_seconds)
        return state

    def validate_state(self, state: str, expected_user_id: str | None = None) -> str:
        """
        Validate a state parameter and return the user id it carries.

        Args:
            state: State parameter from the OAuth callback
            expected_user_id: When given, the carried user id must match it

        Returns:
            str: The user id bound at generation time

        Raises:
            OAuthStateError: If the state is missing, expired, forged or mismatched
        """
        if not state:
            raise OAuthStateError("Missing OAuth state")

        try:
            claims = jwt.decode(
                state,
                self._secret,
                algorithms=[STATE_ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.warning("OAuth state expired")
            raise OAuthStateError("OAuth state expired") from e
        except jwt.InvalidTokenError as e:
            logger.warning("OAuth state rejected", error=str(e))
            raise OAuthStateError("Invalid OAuth state") from e

        if claims.get("purpose") != STATE_PURPOSE:
            raise OAuthStateError("Invalid OAuth state")

        user_id = claims["sub"]
        if expected_user_id is not None and user_id != expected_user_id:
            logger.warning(
                "OAuth state validation failed - user ID mismatch",
                expected_user_id=expected_user_id,
                state_user_id=user_id,
            )
            raise OAuthStateError("OAuth state does not match user")

        logger.info("OAuth state validated", user_id=user_id)
        return user_id


oauth_state_service = OAuthStateService()
