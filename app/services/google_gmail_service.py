"""
Google Gmail API Service for read-only mailbox access.
Handles Gmail API session setup, raw API calls, and response parsing.
Low-level Gmail API client; callers run it off the event loop.
"""

from datetime import date, datetime
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.config import settings
from app.errors import GmailProviderError, MessageNotFoundError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.gmail_domain import RawMessage

logger = get_logger(__name__)

# Google Gmail API configuration
GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"  # User's Gmail account

# Request timeouts and retry configuration. A full retry cycle must fit
# inside SYNC_FETCH_TIMEOUT_SECONDS or the orchestrator gives up first.
REQUEST_TIMEOUT = (3, 5)  # connect, read seconds
MAX_RETRIES = 2
BACKOFF_FACTOR = 1  # sleeps 0, 2 seconds
BACKOFF_MAX = 4
GMAIL_PAGE_LIMIT = 500  # Gmail API maximum for maxResults

# Broad provider-side net; the classifier does the precise filtering
JOB_QUERY_TERMS = [
    "application",
    "apply",
    "applied",
    "interview",
    "offer",
    "rejected",
    "rejection",
    "position",
    "role",
    "job",
    "career",
    "hiring",
    "recruit",
    "candidate",
    '"thank you for"',
    '"thanks for applying"',
    "congratulations",
    "schedule",
    '"phone screen"',
    '"video call"',
    '"next steps"',
]
DEFAULT_JOB_QUERY = f"({' OR '.join(JOB_QUERY_TERMS)}) in:inbox"


def worst_case_request_seconds() -> float:
    """Upper bound for one GET including every retry and backoff sleep."""
    attempts = MAX_RETRIES + 1
    sleeps = sum(min(BACKOFF_MAX, BACKOFF_FACTOR * 2 ** (n - 1)) for n in range(2, attempts))
    return attempts * sum(REQUEST_TIMEOUT) + sleeps


def format_after_date(after_date: date | datetime | str) -> str:
    """
    Normalise an after-date to Gmail's YYYY/MM/DD form.

    Raises:
        ValueError: If a string date is in neither YYYY/MM/DD nor YYYY-MM-DD form
    """
    if isinstance(after_date, datetime):
        after_date = after_date.date()
    if isinstance(after_date, date):
        return after_date.strftime("%Y/%m/%d")

    value = after_date.strip()
    for fmt in ("%Y/%m/%d", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt).strftime("%Y/%m/%d")
        except ValueError:
            continue
    raise ValueError(f"Unsupported after date: {after_date!r}")


class GoogleGmailService:
    """
    Service for Google Gmail API operations.

    Pure API client: HTTP requests, authentication headers, error mapping
    and retry logic. Every failure surfaces as GmailProviderError.
    """

    def __init__(self, session: requests.Session | None = None):
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create requests session with retry strategy for Gmail API."""
        session = requests.Session()

        retry_strategy = Retry(
            total=MAX_RETRIES,
            backoff_factor=BACKOFF_FACTOR,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            backoff_max=BACKOFF_MAX,
            # Retry-After can exceed the per-message budget
            respect_retry_after_header=False,
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)

        return session

    def _get_auth_headers(self, access_token: str) -> dict:
        """Get authorization headers for Gmail API requests."""
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    def _get(
        self,
        path: str,
        access_token: str,
        operation: str,
        params: dict | None = None,
        message_id: str | None = None,
    ) -> dict:
        url = f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/{path}"
        try:
            response = self._session.get(
                url,
                headers=self._get_auth_headers(access_token),
                params=params,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(
                f"Gmail API {operation} transport error",
                message_id=message_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GmailProviderError(
                f"Transport error: {e}", operation=operation, message_id=message_id
            ) from e

        return self._handle_api_response(response, operation, message_id)

    def _handle_api_response(
        self, response: requests.Response, operation: str, message_id: str | None = None
    ) -> dict:
        """
        Handle and validate Gmail API response.

        Args:
            response: HTTP response from Gmail API
            operation: Operation name for logging
            message_id: Message involved, if any

        Returns:
            dict: Parsed response data

        Raises:
            MessageNotFoundError: On 404
            GmailProviderError: On any other error or unparseable body
        """
        logger.debug(
            f"Gmail API {operation} response",
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.ok:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Gmail API {operation} response", error=str(e))
                raise GmailProviderError(
                    f"Invalid response format: {e}", operation=operation, message_id=message_id
                ) from e

        try:
            error_info = (response.json() if response.text else {}).get("error", {})
        except ValueError:
            error_info = {}
        if not isinstance(error_info, dict):
            error_info = {"message": str(error_info)}

        error_code = str(error_info.get("code", response.status_code))
        error_message = error_info.get("message", f"HTTP {response.status_code}")

        logger.error(
            f"Gmail API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
            message_id=message_id,
        )

        error_cls = MessageNotFoundError if response.status_code == 404 else GmailProviderError
        raise error_cls(
            self._map_gmail_error(str(response.status_code), error_message),
            operation=operation,
            message_id=message_id,
            status_code=response.status_code,
            error_code=error_code,
        )

    def _map_gmail_error(self, error_code: str, error_message: str) -> str:
        """Map Gmail API error codes to user-friendly messages."""
        error_mappings = {
            "403": "Gmail access denied. Please check permissions.",
            "404": "Email message not found.",
            "400": "Invalid Gmail request format.",
            "401": "Gmail authorization expired. Please reconnect.",
            "429": "Too many Gmail requests. Please try again later.",
            "500": "Gmail service temporarily unavailable.",
        }

        return error_mappings.get(error_code, f"Gmail error: {error_message}")

    def list_candidate_ids(
        self,
        access_token: str,
        query: str | None = None,
        after_date: date | datetime | str | None = None,
        max_results: int | None = None,
    ) -> list[str]:
        """
        List message ids matching a search query, in provider order.

        Args:
            access_token: Valid OAuth access token
            query: Gmail search query; defaults to DEFAULT_JOB_QUERY
            after_date: Appended as ``after:YYYY/MM/DD`` when given
            max_results: Hard cap on the number of ids returned

        Returns:
            list[str]: At most max_results unique ids

        Raises:
            GmailProviderError: If listing fails
        """
        limit = settings.SYNC_DEFAULT_MAX_RESULTS if max_results is None else max_results
        if limit <= 0:
            return []

        search = (query or DEFAULT_JOB_QUERY).strip()
        if after_date:
            search = f"{search} after:{format_after_date(after_date)}"

        ids: list[str] = []
        seen: set[str] = set()
        page_token: str | None = None

        while len(ids) < limit:
            params: dict[str, Any] = {
                "q": search,
                "maxResults": min(limit - len(ids), GMAIL_PAGE_LIMIT),
            }
            if page_token:
                params["pageToken"] = page_token

            data = self._get("messages", access_token, "list_messages", params=params)

            for item in data.get("messages") or []:
                message_id = item.get("id")
                if not message_id or message_id in seen:
                    continue
                seen.add(message_id)
                ids.append(message_id)
                if len(ids) >= limit:
                    break

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.info(
            "Listed candidate messages",
            count=len(ids),
            max_results=limit,
            has_after_date=bool(after_date),
        )
        return ids

    def fetch_full(self, access_token: str, message_id: str) -> RawMessage:
        """
        Fetch one message in full format.

        Raises:
            MessageNotFoundError: The message no longer exists
            GmailProviderError: Any other failure, tagged with message_id
        """
        data = self._get(
            f"messages/{message_id}",
            access_token,
            "get_message",
            params={"format": "full"},
            message_id=message_id,
        )
        try:
            return RawMessage.from_api_response(data)
        except (AttributeError, TypeError) as e:
            raise GmailProviderError(
                f"Malformed message payload: {e}", operation="get_message", message_id=message_id
            ) from e

    def get_profile(self, access_token: str) -> dict[str, Any]:
        """
        Mailbox profile: emailAddress, messagesTotal, threadsTotal.

        Raises:
            GmailProviderError: If the profile call fails
        """
        data = self._get("profile", access_token, "get_profile")
        return {
            "emailAddress": data.get("emailAddress"),
            "messagesTotal": int(data.get("messagesTotal") or 0),
            "threadsTotal": int(data.get("threadsTotal") or 0),
        }


# Singleton instance for application use
google_gmail_service = GoogleGmailService()
