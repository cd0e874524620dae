"""
Email Sync Job for scheduled mailbox ingestion.
Runs one sync pass for every connected user, a few users at a time.
"""

import asyncio
import time
from datetime import UTC, datetime

from app.config import settings
from app.db.pool import db_pool
from app.errors import (
    DatabaseError,
    GmailProviderError,
    RefreshFailedError,
    TokenServiceError,
)
from app.infrastructure.observability.logging import get_logger
from app.models.domain.application_domain import SyncRunResult
from app.repositories.connection_repository import connection_repository
from app.services.sync_orchestrator import sync_orchestrator

logger = get_logger(__name__)


class EmailSyncJobError(Exception):
    """Custom exception for email sync job operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class EmailSyncMetrics:
    """Metrics tracking for one email sync job run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.users_processed = 0
        self.users_synced = 0
        self.users_disconnected = 0
        self.user_failures = 0
        self.applications_saved = 0
        self.duplicates_skipped = 0
        self.message_errors = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_success(self, user_id: str, result: SyncRunResult, duration_ms: float):
        self.users_processed += 1
        self.users_synced += 1
        self.applications_saved += result.saved
        self.duplicates_skipped += result.duplicates_skipped
        self.message_errors += len(result.errors)

        logger.debug(
            "User sync finished",
            user_id=user_id,
            saved=result.saved,
            duration_ms=round(duration_ms, 2),
            job_run="email_sync",
        )

    def record_failure(self, user_id: str, error: str, disconnected: bool = False):
        self.users_processed += 1
        self.user_failures += 1
        if disconnected:
            self.users_disconnected += 1

        self.errors.append(
            {
                "user_id": user_id,
                "error": error,
                "disconnected": disconnected,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.warning(
            "User sync failed",
            user_id=user_id,
            error=error,
            disconnected=disconnected,
            job_run="email_sync",
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "email_sync",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "users_processed": self.users_processed,
            "users_synced": self.users_synced,
            "users_disconnected": self.users_disconnected,
            "user_failures": self.user_failures,
            "applications_saved": self.applications_saved,
            "duplicates_skipped": self.duplicates_skipped,
            "message_errors": self.message_errors,
            "errors_count": len(self.errors),
        }


class EmailSyncJob:
    """
    Background job that syncs every connected mailbox.

    A failing user never stops the others; their error is recorded in the
    run metrics and the job moves on.
    """

    def __init__(self, store=None, orchestrator=None, concurrency: int | None = None):
        self.store = store or connection_repository
        self.orchestrator = orchestrator or sync_orchestrator
        self.concurrency = concurrency or settings.SYNC_WORKER_CONCURRENCY
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = EmailSyncMetrics()

    async def run_once(self) -> dict:
        """
        Sync all connected users once.

        Returns:
            dict: Job execution metrics

        Raises:
            EmailSyncJobError: If the connected users cannot be listed
        """
        if self.is_running:
            logger.warning("Email sync job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            try:
                user_ids = await self.store.list_connected_user_ids()
            except DatabaseError as e:
                raise EmailSyncJobError(
                    f"Failed to list connected users: {e}", operation="list_users"
                ) from e

            logger.info("Starting email sync job", user_count=len(user_ids))

            semaphore = asyncio.Semaphore(self.concurrency)

            async def sync_with_semaphore(user_id: str) -> None:
                async with semaphore:
                    await self._sync_user(user_id)

            await asyncio.gather(*(sync_with_semaphore(user_id) for user_id in user_ids))

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            metrics = self.job_metrics.to_dict()
            logger.info("Email sync job completed", **metrics)
            return metrics

        finally:
            self.is_running = False

    async def _sync_user(self, user_id: str) -> None:
        start_time = time.time()
        try:
            result = await self.orchestrator.run_sync(user_id)
        except RefreshFailedError as e:
            self.job_metrics.record_failure(user_id, str(e), disconnected=True)
        except (TokenServiceError, GmailProviderError, DatabaseError) as e:
            self.job_metrics.record_failure(user_id, str(e))
        except Exception as e:
            self.job_metrics.record_failure(user_id, f"Unexpected error: {type(e).__name__}: {e}")
        else:
            self.job_metrics.record_success(user_id, result, (time.time() - start_time) * 1000)


# Singleton instance for application use
email_sync_job = EmailSyncJob()


async def run_email_sync_job() -> dict:
    """Run a single iteration of the email sync job."""
    return await email_sync_job.run_once()


async def start_email_sync_scheduler():
    """
    Run the email sync job forever on a fixed interval.

    Owns the database pool for the lifetime of the worker process.
    """
    interval_minutes = settings.SYNC_JOB_INTERVAL_MINUTES
    logger.info("Starting email sync job scheduler", interval_minutes=interval_minutes)

    await db_pool.initialize()
    try:
        while True:
            try:
                await run_email_sync_job()
            except EmailSyncJobError as e:
                logger.error("Email sync job run failed", error=str(e), operation=e.operation)
            await asyncio.sleep(interval_minutes * 60)
    finally:
        await db_pool.close()
