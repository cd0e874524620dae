# models/api/oauth_response.py
"""
OAuth API response models for the Gmail connection lifecycle.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuthURLResponse(_CamelModel):
    """Google OAuth URL for read-only Gmail access."""

    auth_url: str = Field(..., description="Google OAuth authorization URL")
    state: str = Field(..., description="Signed OAuth state parameter")


class AuthStatusResponse(_CamelModel):
    """Connection status after the refresh-or-disconnect decision."""

    connected: bool = Field(..., description="Whether Gmail is connected and usable")
    email: str | None = Field(default=None, description="Connected Gmail address")
    error: str | None = Field(default=None, description="Why the connection is unusable")


class AuthActionResponse(_CamelModel):
    """Result of an explicit lifecycle action (disconnect, refresh)."""

    success: bool
    message: str
