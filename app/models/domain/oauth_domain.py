# models/domain/oauth_domain.py
"""
OAuth connection domain model.
One row per user; tokens are held decrypted in memory only.
"""

from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel


class OAuthConnection(BaseModel):
    """Domain model for a user's Gmail connection (decrypted tokens)."""

    user_id: str
    provider: Literal["google"] = "google"
    email: str = ""
    access_token: str | None = None  # decrypted
    refresh_token: str | None = None  # decrypted
    expires_at: datetime | None = None
    connected: bool = True
    updated_at: datetime | None = None

    def needs_refresh(self, margin_seconds: int = 60) -> bool:
        """True unless the access token stays valid beyond now + margin."""
        if not self.access_token or not self.expires_at:
            return True
        return datetime.now(UTC) + timedelta(seconds=margin_seconds) >= self.expires_at

    def is_usable(self) -> bool:
        """Connected and still holding a refresh token."""
        return self.connected and bool(self.refresh_token)

    def disconnected(self) -> "OAuthConnection":
        """Copy with both tokens cleared and the connection flag dropped."""
        return self.model_copy(
            update={
                "access_token": None,
                "refresh_token": None,
                "expires_at": None,
                "connected": False,
                "updated_at": datetime.now(UTC),
            }
        )
