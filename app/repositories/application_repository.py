"""
Application repository: persisted job applications per user.
"""

import uuid
from typing import Protocol

from app.db.helpers import execute_query, fetch_all, fetch_val, with_db_retry
from app.errors import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.application_domain import ParsedApplication, StoredApplication

logger = get_logger(__name__)


class ApplicationStore(Protocol):
    """Storage seam for applications the sync pipeline reads and writes."""

    async def list_for_user(self, user_id: str) -> list[StoredApplication]: ...

    async def save(self, user_id: str, application: ParsedApplication) -> StoredApplication: ...

    async def count_for_user(self, user_id: str) -> int: ...


class ApplicationRepository:
    """Postgres-backed ApplicationStore over the applications table."""

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_for_user(self, user_id: str) -> list[StoredApplication]:
        query = """
        SELECT id, user_id, company, role, location, date_applied,
               status, source, email_id, confidence
        FROM applications
        WHERE user_id = %s
        ORDER BY date_applied DESC, created_at DESC
        """
        rows = await fetch_all(query, (user_id,))
        return [
            StoredApplication(
                id=str(row["id"]),
                user_id=str(row["user_id"]),
                company=row["company"],
                role=row["role"],
                location=row["location"],
                date_applied=row["date_applied"].isoformat(),
                status=row["status"],
                source=row["source"],
                email_id=row["email_id"],
                confidence=float(row["confidence"] or 0.0),
            )
            for row in rows
        ]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def save(self, user_id: str, application: ParsedApplication) -> StoredApplication:
        application_id = str(uuid.uuid4())
        query = """
        INSERT INTO applications (
            id, user_id, company, role, location, date_applied,
            status, source, email_id, confidence
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, 'email', %s, %s)
        """
        affected_rows = await execute_query(
            query,
            (
                application_id,
                user_id,
                application.company,
                application.role,
                application.location,
                application.date_applied,
                application.status.value,
                application.email_id,
                application.confidence,
            ),
        )
        if affected_rows < 1:
            raise DatabaseError("Application insert affected no rows", operation="save_application")

        logger.info(
            "Application saved",
            user_id=user_id,
            application_id=application_id,
            email_id=application.email_id,
            status=application.status.value,
        )
        return StoredApplication(id=application_id, user_id=user_id, **application.model_dump())

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def count_for_user(self, user_id: str) -> int:
        count = await fetch_val("SELECT COUNT(*) AS total FROM applications WHERE user_id = %s", (user_id,))
        return int(count or 0)


application_repository = ApplicationRepository()
