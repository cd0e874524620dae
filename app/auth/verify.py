"""
verify.py
---------
Purpose:
    Session JWT verification (HS256, signed with SESSION_SECRET).

Notes:
    - The user id is read from the `sub` claim, falling back to `userId`.
    - Provides `auth_dependency` (claims) and `current_user_id` for protected routes.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.errors import AuthError

SESSION_ALGORITHM = "HS256"

_security = HTTPBearer(auto_error=False)


def verify_jwt(token: str) -> dict:
    """
    Decode and verify a session token.

    Raises:
        AuthError: If the token is invalid, expired or carries no user id
    """
    try:
        claims = jwt.decode(
            token,
            settings.SESSION_SECRET,
            algorithms=[SESSION_ALGORITHM],
            options={"verify_exp": True},
        )
    except jwt.InvalidTokenError as e:
        raise AuthError(f"Invalid authentication token: {e}") from e

    if not (claims.get("sub") or claims.get("userId")):
        raise AuthError("Authentication token carries no user id")
    return claims


def user_id_from_claims(claims: dict) -> str:
    return str(claims.get("sub") or claims.get("userId"))


def auth_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": AuthError.error_code, "message": "Authentication required"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verify_jwt(credentials.credentials)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": AuthError.error_code, "message": str(e)},
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def current_user_id(claims: dict = Depends(auth_dependency)) -> str:
    return user_id_from_claims(claims)
