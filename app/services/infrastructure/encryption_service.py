"""
Encryption service for OAuth tokens.
Uses Fernet symmetric encryption for token storage; the key is derived from SESSION_SECRET.
"""

import base64
import functools
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.errors import EncryptionError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@functools.lru_cache(maxsize=4)
def _fernet_for_secret(secret: str) -> Fernet:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def _get_fernet() -> Fernet:
    """
    Get Fernet instance keyed from the session secret.

    Raises:
        EncryptionError: If the secret is not configured
    """
    if not settings.SESSION_SECRET:
        raise EncryptionError("SESSION_SECRET not configured in environment")
    return _fernet_for_secret(settings.SESSION_SECRET)


def encrypt_token(token: str) -> bytes:
    """
    Encrypt a token string for database storage.

    Args:
        token: Plain text token to encrypt

    Returns:
        bytes: Encrypted token as bytes (ready for BYTEA storage)

    Raises:
        EncryptionError: If encryption fails
    """
    if not token or not isinstance(token, str):
        raise EncryptionError("Token must be a non-empty string")

    try:
        return _get_fernet().encrypt(token.encode("utf-8"))
    except EncryptionError:
        raise
    except Exception as e:
        logger.error("Failed to encrypt token", error=str(e))
        raise EncryptionError(f"Encryption failed: {e}") from e


def decrypt_token(encrypted_token: bytes | memoryview) -> str:
    """
    Decrypt a token from database storage.

    Raises:
        EncryptionError: If decryption fails or token is invalid
    """
    if isinstance(encrypted_token, memoryview):
        encrypted_token = encrypted_token.tobytes()
    if not encrypted_token or not isinstance(encrypted_token, bytes):
        raise EncryptionError("Encrypted token must be non-empty bytes")

    try:
        return _get_fernet().decrypt(encrypted_token).decode("utf-8")
    except InvalidToken as e:
        logger.error("Token decryption failed - invalid token")
        raise EncryptionError("Invalid or corrupted token") from e


def encrypt_optional(token: str | None) -> bytes | None:
    return encrypt_token(token) if token else None


def decrypt_optional(encrypted_token: bytes | memoryview | None) -> str | None:
    return decrypt_token(encrypted_token) if encrypted_token else None
