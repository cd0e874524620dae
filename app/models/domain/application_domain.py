# models/domain/application_domain.py
"""
Job application domain models.
Classifier output, duplicate identity, and the per-run sync summary.
"""

import re
from datetime import date
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

UNKNOWN_COMPANY = "Unknown"
UNKNOWN_ROLE = "Unknown Position"


class ApplicationStatus(str, Enum):
    """Lifecycle stage of a job application, as inferred from an email."""

    APPLIED = "applied"
    INTERVIEW = "interview"
    OFFER = "offer"
    REJECTED = "rejected"


class DuplicateKey(NamedTuple):
    company: str
    role: str
    date_applied: str


class ParsedApplication(BaseModel):
    """A job-application event extracted from one email."""

    company: str = Field(default=UNKNOWN_COMPANY, min_length=1)
    role: str = Field(default=UNKNOWN_ROLE, min_length=1)
    status: ApplicationStatus = ApplicationStatus.APPLIED
    date_applied: str
    location: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    email_id: str = Field(..., min_length=1)

    @field_validator("date_applied")
    @classmethod
    def _validate_date(cls, value: str) -> str:
        if not DATE_PATTERN.match(value):
            raise ValueError("date_applied must be YYYY-MM-DD")
        date.fromisoformat(value)
        return value

    def duplicate_key(self) -> DuplicateKey:
        return DuplicateKey(
            self.company.strip().casefold(),
            self.role.strip().casefold(),
            self.date_applied.strip().casefold(),
        )


class StoredApplication(ParsedApplication):
    """A persisted application row."""

    id: str
    user_id: str
    source: str = "email"
    email_id: str | None = None


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncError(_CamelModel):
    """One message that failed somewhere in the pipeline."""

    message_id: str
    reason: str


class SyncRunResult(_CamelModel):
    """Summary of a single sync pass; never persisted."""

    fetched: int = 0
    classified: int = 0
    duplicates_skipped: int = 0
    saved: int = 0
    errors: list[SyncError] = Field(default_factory=list)

    def record_error(self, message_id: str, reason: str) -> None:
        self.errors.append(SyncError(message_id=message_id, reason=reason))
