"""Gmail auth route aggregation."""

from fastapi import APIRouter

from app.routes.gmail_auth import oauth, status

router = APIRouter(prefix="/api/auth", tags=["gmail-auth"])

router.include_router(oauth.router)
router.include_router(status.router)
