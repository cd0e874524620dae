"""
Connection repository: persisted OAuth connections, one row per user.
Token columns are encrypted at rest and decrypted on read.
"""

from typing import Protocol

from app.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from app.errors import DatabaseError, EncryptionError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.oauth_domain import OAuthConnection
from app.services.infrastructure.encryption_service import decrypt_optional, encrypt_optional

logger = get_logger(__name__)


class TokenStore(Protocol):
    """Storage seam for OAuth connections."""

    async def get(self, user_id: str) -> OAuthConnection | None: ...

    async def save(self, connection: OAuthConnection) -> None: ...

    async def list_connected_user_ids(self) -> list[str]: ...


class ConnectionRepository:
    """Postgres-backed TokenStore over the email_connections table."""

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get(self, user_id: str) -> OAuthConnection | None:
        query = """
        SELECT user_id, provider, email, access_token, refresh_token,
               expires_at, connected, updated_at
        FROM email_connections
        WHERE user_id = %s
        """
        row = await fetch_one(query, (user_id,))
        if not row:
            return None

        try:
            access_token = decrypt_optional(row["access_token"])
            refresh_token = decrypt_optional(row["refresh_token"])
        except EncryptionError as e:
            # Unreadable tokens cannot be used; treat the row as disconnected.
            logger.error("Stored tokens could not be decrypted", user_id=user_id, error=str(e))
            access_token, refresh_token = None, None

        return OAuthConnection(
            user_id=row["user_id"],
            provider=row["provider"],
            email=row["email"] or "",
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=row["expires_at"],
            connected=bool(row["connected"]) and refresh_token is not None,
            updated_at=row["updated_at"],
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def save(self, connection: OAuthConnection) -> None:
        """Upsert the connection row for connection.user_id."""
        query = """
        INSERT INTO email_connections (
            user_id, provider, email, access_token, refresh_token,
            expires_at, connected, updated_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
        ON CONFLICT (user_id)
        DO UPDATE SET
            provider = EXCLUDED.provider,
            email = EXCLUDED.email,
            access_token = EXCLUDED.access_token,
            refresh_token = EXCLUDED.refresh_token,
            expires_at = EXCLUDED.expires_at,
            connected = EXCLUDED.connected,
            updated_at = NOW()
        """
        affected_rows = await execute_query(
            query,
            (
                connection.user_id,
                connection.provider,
                connection.email,
                encrypt_optional(connection.access_token),
                encrypt_optional(connection.refresh_token),
                connection.expires_at,
                connection.connected,
            ),
        )
        if affected_rows < 1:
            raise DatabaseError("Connection upsert affected no rows", operation="save_connection")

        logger.debug(
            "Connection saved",
            user_id=connection.user_id,
            connected=connection.connected,
            expires_at=connection.expires_at.isoformat() if connection.expires_at else None,
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_connected_user_ids(self) -> list[str]:
        rows = await fetch_all(
            "SELECT user_id FROM email_connections WHERE connected = TRUE ORDER BY user_id"
        )
        return [str(row["user_id"]) for row in rows]


connection_repository = ConnectionRepository()
