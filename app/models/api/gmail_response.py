"""
Email API response models.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProfileResponse(BaseModel):
    """Connected mailbox identity and counts."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str | None = Field(..., description="Connected Gmail address")
    messages_total: int = Field(default=0, description="Messages in the mailbox")
    threads_total: int = Field(default=0, description="Threads in the mailbox")
    applications_tracked: int = Field(default=0, description="Applications stored for the user")
