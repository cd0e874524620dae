"""
Email API request models.
Used by routes for input validation.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

AFTER_DATE_PATTERN = re.compile(r"^\d{4}[/-]\d{2}[/-]\d{2}$")


class SyncRequest(BaseModel):
    """Request body for POST /api/email/sync."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    max_results: int | None = Field(
        default=None, ge=1, le=500, description="Maximum messages to fetch (1-500)"
    )
    after_date: str | None = Field(
        default=None, description="Only messages after this date (YYYY/MM/DD or YYYY-MM-DD)"
    )
    query: str | None = Field(
        default=None, max_length=1000, description="Gmail search query overriding the default"
    )

    @field_validator("after_date")
    @classmethod
    def _validate_after_date(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        if not AFTER_DATE_PATTERN.match(value):
            raise ValueError("afterDate must be YYYY/MM/DD or YYYY-MM-DD")
        return value
