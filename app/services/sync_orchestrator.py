"""
Sync orchestrator: one pull-based pass over a user's mailbox.

    acquire token -> list ids -> fetch messages -> classify -> dedupe -> persist

Token failures abort the run before anything happens. Listing failures abort
it before any message is touched. From there on every message is isolated:
a failure is recorded as {message_id, reason} and the batch carries on.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from app.config import settings
from app.errors import DatabaseError, GmailProviderError, TokenServiceError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.application_domain import ParsedApplication, SyncRunResult
from app.models.domain.gmail_domain import RawMessage
from app.repositories.application_repository import ApplicationStore, application_repository
from app.services.duplicate_detector import DuplicateDetector, duplicate_detector
from app.services.email_classifier import EmailClassifier, email_classifier
from app.services.google_gmail_service import GoogleGmailService, google_gmail_service
from app.services.infrastructure.user_locks import UserLocks
from app.services.token_service import TokenService, token_service

logger = get_logger(__name__)

LIST_TIMEOUT_SECONDS = 60  # whole paginated listing


class SyncState(str, Enum):
    IDLE = "idle"
    TOKEN_ACQUIRED = "token_acquired"
    FETCHING = "fetching"
    CLASSIFYING_BATCH = "classifying_batch"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[SyncState, set[SyncState]] = {
    SyncState.IDLE: {SyncState.TOKEN_ACQUIRED, SyncState.FAILED},
    SyncState.TOKEN_ACQUIRED: {SyncState.FETCHING, SyncState.FAILED},
    SyncState.FETCHING: {SyncState.CLASSIFYING_BATCH},
    SyncState.CLASSIFYING_BATCH: {SyncState.PERSISTING},
    SyncState.PERSISTING: {SyncState.COMPLETED},
    SyncState.COMPLETED: set(),
    SyncState.FAILED: set(),
}


@dataclass
class SyncOptions:
    """Caller-supplied knobs for one run; None means use the configured default."""

    max_results: int | None = None
    after_date: date | str | None = None
    query: str | None = None


@dataclass
class SyncRun:
    """Bookkeeping for a single run: current state plus the result being built."""

    user_id: str
    state: SyncState = SyncState.IDLE
    result: SyncRunResult = field(default_factory=SyncRunResult)
    started_at: float = field(default_factory=time.monotonic)

    def transition(self, new_state: SyncState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal sync transition {self.state.value} -> {new_state.value}")
        logger.debug(
            "Sync state change",
            user_id=self.user_id,
            from_state=self.state.value,
            to_state=new_state.value,
        )
        self.state = new_state

    @property
    def duration_ms(self) -> float:
        return round((time.monotonic() - self.started_at) * 1000, 2)


def _reason(error: BaseException) -> str:
    if isinstance(error, GmailProviderError | DatabaseError | TokenServiceError):
        return str(error)
    if isinstance(error, TimeoutError):
        return "timed out"
    return f"{type(error).__name__}: {error}"


class SyncOrchestrator:
    """
    Runs sync passes for users.

    Collaborators are injected so tests can swap the mailbox, stores and
    classifier for in-memory fakes.
    """

    def __init__(
        self,
        token_manager: TokenService | None = None,
        fetcher: GoogleGmailService | None = None,
        classifier: EmailClassifier | None = None,
        detector: DuplicateDetector | None = None,
        store: ApplicationStore | None = None,
        fetch_concurrency: int | None = None,
        fetch_timeout_seconds: float | None = None,
    ):
        self.token_manager = token_manager or token_service
        self.fetcher = fetcher or google_gmail_service
        self.classifier = classifier or email_classifier
        self.detector = detector or duplicate_detector
        self.store = store or application_repository
        self.fetch_concurrency = fetch_concurrency or settings.SYNC_FETCH_CONCURRENCY
        self.fetch_timeout_seconds = fetch_timeout_seconds or settings.SYNC_FETCH_TIMEOUT_SECONDS
        self._user_locks = UserLocks()

    async def run_sync(self, user_id: str, options: SyncOptions | None = None) -> SyncRunResult:
        """
        Run one sync pass for user_id.

        Args:
            user_id: Owner of the mailbox
            options: Window and size of the pass

        Returns:
            SyncRunResult: Counts and per-message errors

        Raises:
            DisconnectedError: No active Gmail connection
            RefreshFailedError: Token refresh failed; the user is now disconnected
            GmailProviderError: Candidate listing failed; nothing was processed
        """
        options = options or SyncOptions()
        run = SyncRun(user_id=user_id)

        logger.info("Sync started", user_id=user_id, max_results=options.max_results)

        try:
            access_token = await self.token_manager.acquire_valid_access_token(user_id)
        except TokenServiceError as e:
            run.transition(SyncState.FAILED)
            logger.warning(
                "Sync aborted - no usable token",
                user_id=user_id,
                error_code=getattr(e, "error_code", None),
            )
            raise
        run.transition(SyncState.TOKEN_ACQUIRED)

        try:
            message_ids = await self._list_ids(access_token, options)
        except GmailProviderError as e:
            run.transition(SyncState.FAILED)
            logger.error("Sync aborted - could not list messages", user_id=user_id, error=str(e))
            raise

        run.transition(SyncState.FETCHING)
        messages = await self._fetch_messages(run, access_token, message_ids)

        run.transition(SyncState.CLASSIFYING_BATCH)
        parsed = await self._classify_messages(run, messages)

        run.transition(SyncState.PERSISTING)
        await self._persist(run, parsed)

        run.transition(SyncState.COMPLETED)
        result = run.result
        logger.info(
            "Sync completed",
            user_id=user_id,
            fetched=result.fetched,
            classified=result.classified,
            duplicates_skipped=result.duplicates_skipped,
            saved=result.saved,
            errors=len(result.errors),
            duration_ms=run.duration_ms,
        )
        return result

    def _effective_window(self, options: SyncOptions) -> tuple[int, Any]:
        max_results = options.max_results or settings.SYNC_DEFAULT_MAX_RESULTS
        max_results = max(1, min(max_results, settings.SYNC_MAX_RESULTS_LIMIT))
        after_date = options.after_date or (
            datetime.now(UTC).date() - timedelta(days=settings.SYNC_DEFAULT_LOOKBACK_DAYS)
        )
        return max_results, after_date

    async def _list_ids(self, access_token: str, options: SyncOptions) -> list[str]:
        max_results, after_date = self._effective_window(options)
        try:
            message_ids = await asyncio.wait_for(
                asyncio.to_thread(
                    self.fetcher.list_candidate_ids,
                    access_token,
                    options.query,
                    after_date,
                    max_results,
                ),
                timeout=LIST_TIMEOUT_SECONDS,
            )
        except TimeoutError as e:
            raise GmailProviderError("Listing messages timed out", operation="list_messages") from e

        # The fetcher already caps, but the cap is part of the run's contract
        return list(message_ids)[:max_results]

    async def _fetch_messages(
        self, run: SyncRun, access_token: str, message_ids: list[str]
    ) -> list[RawMessage]:
        """Fetch full messages with bounded concurrency; failures become per-item errors."""
        semaphore = asyncio.Semaphore(self.fetch_concurrency)

        async def fetch_one(message_id: str) -> RawMessage:
            async with semaphore:
                call = asyncio.ensure_future(
                    asyncio.to_thread(self.fetcher.fetch_full, access_token, message_id)
                )
                try:
                    return await asyncio.wait_for(
                        asyncio.shield(call), timeout=self.fetch_timeout_seconds
                    )
                except TimeoutError:
                    # The thread cannot be interrupted; hold the slot until it returns
                    await asyncio.gather(call, return_exceptions=True)
                    raise

        outcomes = await asyncio.gather(
            *(fetch_one(message_id) for message_id in message_ids), return_exceptions=True
        )

        messages: list[RawMessage] = []
        for message_id, outcome in zip(message_ids, outcomes, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(
                    "Message fetch failed",
                    user_id=run.user_id,
                    message_id=message_id,
                    error=_reason(outcome),
                )
                run.result.record_error(message_id, _reason(outcome))
                continue
            messages.append(outcome)

        run.result.fetched = len(messages)
        return messages

    async def _classify_messages(
        self, run: SyncRun, messages: list[RawMessage]
    ) -> list[ParsedApplication]:
        parsed: list[ParsedApplication] = []
        for message in messages:
            try:
                application = await asyncio.to_thread(self.classifier.classify, message)
            except Exception as e:
                logger.warning(
                    "Message classification failed",
                    user_id=run.user_id,
                    message_id=message.message_id,
                    error=_reason(e),
                )
                run.result.record_error(message.message_id, _reason(e))
                continue

            if application is None:
                continue
            run.result.classified += 1
            parsed.append(application)
        return parsed

    async def _persist(self, run: SyncRun, parsed: list[ParsedApplication]) -> None:
        """Dedupe and save under the user's lock so concurrent runs cannot double-save."""
        if not parsed:
            return

        async with self._user_locks.hold(run.user_id):
            try:
                existing = await self.store.list_for_user(run.user_id)
            except Exception as e:
                logger.error(
                    "Could not load existing applications",
                    user_id=run.user_id,
                    error=_reason(e),
                )
                for application in parsed:
                    run.result.record_error(
                        application.email_id, f"existing applications unavailable: {_reason(e)}"
                    )
                return

            index = self.detector.build_index(existing)

            for application in parsed:
                try:
                    if self.detector.is_duplicate(application, index):
                        run.result.duplicates_skipped += 1
                        logger.debug(
                            "Duplicate application skipped",
                            user_id=run.user_id,
                            message_id=application.email_id,
                        )
                        continue

                    await self.store.save(run.user_id, application)
                    index.add(application)
                    run.result.saved += 1

                except Exception as e:
                    logger.warning(
                        "Application persistence failed",
                        user_id=run.user_id,
                        message_id=application.email_id,
                        error=_reason(e),
                    )
                    run.result.record_error(application.email_id, _reason(e))


# Singleton instance for application use
sync_orchestrator = SyncOrchestrator()
