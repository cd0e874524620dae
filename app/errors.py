"""
Error taxonomy shared by services and routes.

Auth and token errors abort a sync run and surface as 401s. Provider and
storage errors carry enough context (operation, ids) to be recorded per item.
"""


class AuthError(Exception):
    """No session or an invalid session token."""

    error_code = "unauthenticated"


class TokenServiceError(Exception):
    """Base class for connection/token lifecycle failures."""

    error_code = "token_error"

    def __init__(self, message: str, user_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.user_id = user_id
        self.recoverable = recoverable


class DisconnectedError(TokenServiceError):
    """The user has no active Gmail connection and must authorize again."""

    error_code = "gmail_not_connected"

    def __init__(self, message: str = "No active Gmail connection", user_id: str | None = None):
        super().__init__(message, user_id=user_id, recoverable=False)


class RefreshFailedError(TokenServiceError):
    """The refresh token was rejected; the connection has been force-disconnected."""

    error_code = "gmail_refresh_failed"

    def __init__(self, message: str = "Gmail token refresh failed", user_id: str | None = None):
        super().__init__(message, user_id=user_id, recoverable=False)


class GoogleOAuthError(Exception):
    """Google OAuth endpoint failure (code exchange, refresh, revoke)."""

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


class GmailProviderError(Exception):
    """Gmail API failure, always tagged with the operation and message id involved."""

    def __init__(
        self,
        message: str,
        operation: str,
        message_id: str | None = None,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.message_id = message_id
        self.status_code = status_code
        self.error_code = error_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.message_id:
            return f"{self.operation}({self.message_id}): {base}"
        return f"{self.operation}: {base}"


class MessageNotFoundError(GmailProviderError):
    """The requested message no longer exists in the mailbox."""


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class EncryptionError(Exception):
    """Custom exception for encryption/decryption errors."""


class OAuthStateError(Exception):
    """OAuth state parameter missing, expired or forged."""
