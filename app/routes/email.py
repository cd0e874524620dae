"""
Email API Routes
HTTP endpoints for mailbox sync and the connected mailbox profile.
"""

import asyncio

from fastapi import APIRouter, Body, Depends, HTTPException, status

from app.auth.verify import auth_dependency, user_id_from_claims
from app.errors import (
    DatabaseError,
    DisconnectedError,
    GmailProviderError,
    RefreshFailedError,
)
from app.infrastructure.observability.logging import get_logger
from app.models.api.gmail_request import SyncRequest
from app.models.api.gmail_response import ProfileResponse
from app.models.domain.application_domain import SyncRunResult
from app.repositories.application_repository import application_repository
from app.services.google_gmail_service import google_gmail_service
from app.services.sync_orchestrator import SyncOptions, sync_orchestrator
from app.services.token_service import token_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api/email", tags=["email"])


def _token_error_response(e: DisconnectedError | RefreshFailedError) -> HTTPException:
    message = (
        "Gmail is not connected"
        if isinstance(e, DisconnectedError)
        else "Gmail access expired. Please reconnect your Gmail account"
    )
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": e.error_code, "message": message},
    )


@router.post("/sync", response_model=SyncRunResult)
async def sync_mailbox(
    request: SyncRequest | None = Body(default=None),
    claims: dict = Depends(auth_dependency),
):
    """
    Run one sync pass over the user's mailbox.

    Lists candidate messages, classifies them and stores new applications.
    Per-message problems are reported in ``errors`` and never fail the call.

    Raises:
        401: Not authenticated, Gmail not connected, or token refresh failed
        502: Gmail refused to list messages
    """
    user_id = user_id_from_claims(claims)
    request = request or SyncRequest()

    options = SyncOptions(
        max_results=request.max_results,
        after_date=request.after_date,
        query=request.query,
    )

    try:
        result = await sync_orchestrator.run_sync(user_id, options)
    except (DisconnectedError, RefreshFailedError) as e:
        raise _token_error_response(e) from None
    except GmailProviderError as e:
        logger.error("Sync failed at Gmail", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "gmail_unavailable", "message": "Could not list Gmail messages"},
        ) from None

    return result


@router.get("/profile", response_model=ProfileResponse)
async def get_mailbox_profile(claims: dict = Depends(auth_dependency)):
    """
    Connected mailbox address and counts, plus how many applications are stored.

    Raises:
        401: Not authenticated, Gmail not connected, or token refresh failed
        502: Gmail profile request failed
    """
    user_id = user_id_from_claims(claims)

    try:
        access_token = await token_service.acquire_valid_access_token(user_id)
        profile = await asyncio.to_thread(google_gmail_service.get_profile, access_token)
        tracked = await application_repository.count_for_user(user_id)
    except (DisconnectedError, RefreshFailedError) as e:
        raise _token_error_response(e) from None
    except GmailProviderError as e:
        logger.error("Gmail profile request failed", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "gmail_unavailable", "message": "Could not load Gmail profile"},
        ) from None
    except DatabaseError as e:
        logger.error("Failed to count applications", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load profile",
        ) from None

    return ProfileResponse(
        email=profile.get("emailAddress"),
        messages_total=profile.get("messagesTotal", 0),
        threads_total=profile.get("threadsTotal", 0),
        applications_tracked=tracked,
    )
