"""
Token Service for OAuth connection lifecycle management.
Decides between reusing, refreshing and disconnecting a user's Gmail
connection, and is the only writer of token fields.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.errors import DisconnectedError, GoogleOAuthError, RefreshFailedError, TokenServiceError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.oauth_domain import OAuthConnection
from app.repositories.connection_repository import TokenStore, connection_repository
from app.services.google_oauth_service import TokenResponse, google_oauth_service
from app.services.infrastructure.user_locks import UserLocks

logger = get_logger(__name__)

REFRESH_TIMEOUT_SECONDS = 30  # whole refresh call, retries included


class TokenService:
    """
    Service for managing the OAuth token lifecycle of Gmail connections.

    Hands out valid access tokens, refreshing them on demand. A refresh
    failure of any kind disconnects the user; stale tokens are never retried.
    """

    def __init__(
        self,
        store: TokenStore | None = None,
        oauth_client: Any = None,
        expiry_margin_seconds: int | None = None,
    ):
        self.store = store or connection_repository
        self.oauth_client = oauth_client or google_oauth_service
        self.expiry_margin_seconds = (
            settings.TOKEN_EXPIRY_MARGIN_SECONDS
            if expiry_margin_seconds is None
            else expiry_margin_seconds
        )
        self._locks = UserLocks()

    async def acquire_valid_access_token(self, user_id: str) -> str:
        """
        Return an access token that stays valid beyond the safety margin.

        Args:
            user_id: Owner of the connection

        Returns:
            str: Usable access token

        Raises:
            DisconnectedError: No connection, or the connection is marked disconnected
            RefreshFailedError: A refresh was needed and failed; the user is now disconnected
        """
        connection = await self._require_connection(user_id)
        if not connection.needs_refresh(self.expiry_margin_seconds):
            return connection.access_token

        async with self._locks.hold(user_id):
            # Another coroutine may have refreshed while we waited
            connection = await self._require_connection(user_id)
            if not connection.needs_refresh(self.expiry_margin_seconds):
                logger.debug("Reusing token refreshed by concurrent caller", user_id=user_id)
                return connection.access_token

            refreshed = await self._refresh(connection)
            return refreshed.access_token

    async def force_refresh(self, user_id: str) -> OAuthConnection:
        """
        Refresh regardless of expiry.

        Raises:
            DisconnectedError: No active connection to refresh
            RefreshFailedError: The provider refused; the user is now disconnected
        """
        async with self._locks.hold(user_id):
            connection = await self._require_connection(user_id)
            logger.info("Forcing token refresh", user_id=user_id)
            return await self._refresh(connection)

    async def connect(
        self, user_id: str, token_response: TokenResponse, email: str
    ) -> OAuthConnection:
        """
        Persist a new connection from a completed code exchange.

        Raises:
            TokenServiceError: If the token response carries no refresh token
        """
        if not token_response.refresh_token:
            raise TokenServiceError(
                "Token response is missing a refresh token", user_id=user_id, recoverable=False
            )

        connection = OAuthConnection(
            user_id=user_id,
            email=email,
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token,
            expires_at=token_response.expires_at,
            connected=True,
            updated_at=datetime.now(UTC),
        )
        async with self._locks.hold(user_id):
            await self.store.save(connection)

        logger.info(
            "Gmail connection stored",
            user_id=user_id,
            expires_at=connection.expires_at.isoformat() if connection.expires_at else None,
        )
        return connection

    async def disconnect(self, user_id: str) -> bool:
        """
        Revoke at the provider (best effort), then clear tokens and mark disconnected.

        Returns:
            bool: False if there was no stored connection
        """
        async with self._locks.hold(user_id):
            connection = await self.store.get(user_id)
            if connection is None:
                logger.debug("No connection to disconnect", user_id=user_id)
                return False

            token = connection.refresh_token or connection.access_token
            revoked = False
            if token:
                try:
                    revoked = await self.oauth_client.revoke_token(token)
                except GoogleOAuthError as e:
                    logger.warning("Token revocation failed", user_id=user_id, error=str(e))

            await self.store.save(connection.disconnected())

        logger.info("Gmail disconnected", user_id=user_id, revoked=revoked)
        return True

    async def get_status(self, user_id: str) -> dict[str, Any]:
        """
        Connection status with the same refresh-or-disconnect decision as token acquisition.

        Returns:
            dict: {connected, email, error?}
        """
        connection = await self.store.get(user_id)
        if connection is None:
            return {"connected": False, "email": None}
        if not connection.connected:
            return {"connected": False, "email": connection.email or None}

        try:
            await self.acquire_valid_access_token(user_id)
        except RefreshFailedError as e:
            return {
                "connected": False,
                "email": connection.email or None,
                "error": e.error_code,
            }
        except DisconnectedError:
            return {"connected": False, "email": connection.email or None}

        return {"connected": True, "email": connection.email or None}

    async def _require_connection(self, user_id: str) -> OAuthConnection:
        connection = await self.store.get(user_id)
        if connection is None or not connection.connected:
            raise DisconnectedError(user_id=user_id)
        return connection

    async def _refresh(self, connection: OAuthConnection) -> OAuthConnection:
        """Refresh through the provider; on any failure disconnect and raise."""
        user_id = connection.user_id

        if not connection.refresh_token:
            logger.warning("Token refresh failed", user_id=user_id, outcome="missing_refresh_token")
            await self._mark_disconnected(connection)
            raise RefreshFailedError(
                "No refresh token available - re-authentication required", user_id=user_id
            )

        try:
            token_response = await asyncio.wait_for(
                self.oauth_client.refresh_access_token(connection.refresh_token),
                timeout=REFRESH_TIMEOUT_SECONDS,
            )
        except (GoogleOAuthError, TimeoutError) as e:
            logger.warning(
                "Token refresh failed",
                user_id=user_id,
                outcome="provider_rejected" if isinstance(e, GoogleOAuthError) else "timeout",
                error_code=getattr(e, "error_code", None),
            )
            await self._mark_disconnected(connection)
            raise RefreshFailedError(f"Token refresh failed: {e}", user_id=user_id) from e

        refreshed = connection.model_copy(
            update={
                "access_token": token_response.access_token,
                "refresh_token": token_response.refresh_token or connection.refresh_token,
                "expires_at": token_response.expires_at,
                "updated_at": datetime.now(UTC),
            }
        )
        await self.store.save(refreshed)

        logger.info(
            "Token refresh successful",
            user_id=user_id,
            outcome="refreshed",
            new_expires_at=refreshed.expires_at.isoformat() if refreshed.expires_at else None,
        )
        return refreshed

    async def _mark_disconnected(self, connection: OAuthConnection) -> None:
        await self.store.save(connection.disconnected())
        logger.info("Gmail connection marked disconnected", user_id=connection.user_id)


# Singleton instance for application use
token_service = TokenService()
