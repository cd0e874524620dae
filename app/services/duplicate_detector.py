"""
Duplicate detection for parsed applications.
Exact match only: normalised (company, role, date_applied) plus status.
"""

from collections.abc import Iterable

from app.models.domain.application_domain import (
    ApplicationStatus,
    DuplicateKey,
    ParsedApplication,
)


def duplicate_key(application: ParsedApplication) -> DuplicateKey:
    """Case-insensitive, whitespace-trimmed identity triple."""
    return application.duplicate_key()


class DuplicateIndex:
    """
    Set of (DuplicateKey, status) pairs seen for one user.

    Seeded with persisted records and extended as the run saves new ones,
    so messages in the same batch dedupe against each other.
    """

    def __init__(self, applications: Iterable[ParsedApplication] = ()):
        self._entries: set[tuple[DuplicateKey, ApplicationStatus]] = set()
        for application in applications:
            self.add(application)

    def __contains__(self, application: ParsedApplication) -> bool:
        return (duplicate_key(application), application.status) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, application: ParsedApplication) -> None:
        self._entries.add((duplicate_key(application), application.status))


class DuplicateDetector:
    """Answers whether a candidate repeats an application already on record."""

    def is_duplicate(
        self,
        candidate: ParsedApplication,
        existing: Iterable[ParsedApplication] | DuplicateIndex,
    ) -> bool:
        """
        True iff some existing record has an equal DuplicateKey and equal status.

        A different date_applied is a distinct application, never a duplicate.
        """
        if isinstance(existing, DuplicateIndex):
            return candidate in existing

        key = duplicate_key(candidate)
        return any(
            duplicate_key(record) == key and record.status == candidate.status
            for record in existing
        )

    def build_index(self, existing: Iterable[ParsedApplication]) -> DuplicateIndex:
        return DuplicateIndex(existing)


# Singleton instance for application use
duplicate_detector = DuplicateDetector()
