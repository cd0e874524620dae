"""Gmail auth status and connection management routes."""

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import auth_dependency, user_id_from_claims
from app.errors import DatabaseError, DisconnectedError, RefreshFailedError
from app.infrastructure.observability.logging import get_logger
from app.models.api.oauth_response import AuthActionResponse, AuthStatusResponse
from app.services.token_service import token_service

logger = get_logger(__name__)

router = APIRouter()


@router.get("/status", response_model=AuthStatusResponse, response_model_exclude_none=True)
async def get_connection_status(claims: dict = Depends(auth_dependency)):
    """
    Get current Gmail connection status for the authenticated user.

    An expired token is refreshed on the way; if that refresh fails the
    connection is reported as disconnected with the reason in ``error``.

    Raises:
        401: Invalid authentication token
        500: Status check failed
    """
    user_id = user_id_from_claims(claims)

    try:
        status_info = await token_service.get_status(user_id)
    except DatabaseError as e:
        logger.error("Error getting Gmail connection status", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check Gmail connection status",
        ) from None

    logger.debug(
        "Gmail connection status retrieved",
        user_id=user_id,
        connected=status_info["connected"],
    )
    return AuthStatusResponse(**status_info)


@router.post("/disconnect", response_model=AuthActionResponse)
async def disconnect_gmail_account(claims: dict = Depends(auth_dependency)):
    """
    Revoke the Gmail grant (best effort) and clear stored tokens.

    Raises:
        401: Invalid authentication token
        500: Disconnection process failed
    """
    user_id = user_id_from_claims(claims)

    try:
        had_connection = await token_service.disconnect(user_id)
    except DatabaseError as e:
        logger.error("Error during Gmail disconnection", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to disconnect Gmail account. Please try again.",
        ) from None

    if not had_connection:
        return AuthActionResponse(success=True, message="No Gmail account was connected")

    return AuthActionResponse(success=True, message="Gmail account disconnected successfully")


@router.post("/refresh", response_model=AuthActionResponse)
async def refresh_connection(claims: dict = Depends(auth_dependency)):
    """
    Force a refresh of the Gmail access token.

    Raises:
        400: No Gmail connection found
        401: Refresh rejected by Google; the user must reconnect
    """
    user_id = user_id_from_claims(claims)

    try:
        await token_service.force_refresh(user_id)
    except DisconnectedError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": DisconnectedError.error_code,
                "message": "No Gmail connection found",
            },
        ) from None
    except RefreshFailedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": e.error_code, "message": "Please reconnect your Gmail account"},
        ) from None
    except DatabaseError as e:
        logger.error("Error refreshing Gmail connection", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refresh Gmail connection",
        ) from None

    return AuthActionResponse(success=True, message="Gmail connection refreshed successfully")
