"""
Google API connectors for Gmail, Google Calendar and Google Contacts.

Adapts the Google discovery clients to the SourceConnector protocol:
- Cursor mode uses each API's incremental mechanism (Gmail history ids,
  Calendar and People sync tokens)
- Window mode lists records since a timestamp
- Rate limits and server errors are retried with exponential backoff
- An expired cursor is reported as CursorExpiredError
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional, Union

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from pagen_sync.connectors.base import (
    ConnectorError,
    CursorExpiredError,
    FetchError,
    ListMode,
    Page,
    RateLimitError,
)
from pagen_sync.sync.records import CalendarEvent, DirectoryPerson, MailMessage

# Default page size when listing
DEFAULT_PAGE_SIZE = 100

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

# Headers requested for each message
MESSAGE_HEADERS = ["From", "To", "Cc", "Subject", "Date"]

# History entries carrying these labels are never imported
EXCLUDED_LABELS = frozenset({"SPAM", "TRASH", "DRAFT"})

# Person fields to request from the People API
PERSON_FIELDS = ",".join(
    ["names", "emailAddresses", "phoneNumbers", "organizations", "biographies"]
)

logger = logging.getLogger(__name__)


def build_high_signal_query(since: datetime) -> str:
    """
    Build the Gmail search query for conversational mail since a date.

    Matches threads the user replied to, or starred mail, excluding spam
    and trash.

    Args:
        since: Lower bound; only the date part is used

    Returns:
        Gmail search query string
    """
    return (
        "(from:me is:replied) OR (to:me is:replied) OR is:starred "
        f"after:{since.strftime('%Y/%m/%d')} -in:spam -in:trash"
    )


def to_rfc3339(value: datetime) -> str:
    """Format an aware or naive (UTC) datetime for Google API parameters."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def window_anchor(anchor: Union[str, datetime]) -> datetime:
    """Check that a window-mode anchor is a datetime."""
    if not isinstance(anchor, datetime):
        raise TypeError(
            f"window listing needs a datetime anchor, got {type(anchor).__name__}"
        )
    return anchor


class GoogleConnector:
    """
    Shared plumbing for the Google connectors: lazy service creation and
    retry with exponential backoff.
    """

    api_name = ""
    api_version = ""

    # HTTP statuses meaning the cursor is no longer accepted
    expired_statuses: tuple[int, ...] = ()

    def __init__(
        self,
        credentials: Credentials,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        service: Any = None,
    ):
        """
        Initialize the connector.

        Args:
            credentials: Valid Google OAuth2 credentials
            page_size: Records per page when listing
            max_retries: Maximum attempts for failed API calls
            initial_retry_delay: Initial backoff delay in seconds
            max_retry_delay: Maximum backoff delay in seconds
            service: Prebuilt API service resource (tests)
        """
        self.credentials = credentials
        self.page_size = page_size
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self._service = service

    @property
    def service(self) -> Any:
        """
        Get or create the Google API service object.

        Raises:
            ConnectorError: If service cannot be created
        """
        if self._service is None:
            try:
                self._service = build(
                    self.api_name,
                    self.api_version,
                    credentials=self.credentials,
                    cache_discovery=False,
                )
                logger.debug(f"Created {self.api_name} API service")
            except Exception as e:
                logger.error(f"Failed to create {self.api_name} API service: {e}")
                raise ConnectorError(f"Failed to create API service: {e}") from e
        return self._service

    def _is_cursor_expired(self, error: HttpError) -> bool:
        return error.resp.status in self.expired_statuses

    def _retry_with_backoff(
        self,
        operation: Callable[[], Any],
        operation_name: str,
        cursor_mode: bool = False,
    ) -> Any:
        """
        Execute an operation with exponential backoff retry.

        Args:
            operation: Callable to execute
            operation_name: Name for logging purposes
            cursor_mode: Whether the request carries a cursor; only then is
                an expiry status reported as CursorExpiredError

        Returns:
            Result of the operation

        Raises:
            CursorExpiredError: If the cursor was rejected
            RateLimitError: If retries are exhausted due to rate limits
            FetchError: For other API errors
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            try:
                return operation()

            except HttpError as e:
                status_code = e.resp.status

                if cursor_mode and self._is_cursor_expired(e):
                    logger.warning(f"{operation_name}: sync cursor expired ({status_code})")
                    raise CursorExpiredError(
                        f"{operation_name}: sync cursor expired ({status_code})"
                    ) from e

                # Rate limit or quota exceeded - retry with backoff
                if status_code in (429, 403):
                    if attempt < self.max_retries - 1:
                        logger.warning(
                            f"{operation_name} rate limited, retrying in "
                            f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                        )
                        time.sleep(delay)
                        delay = min(delay * 2, self.max_retry_delay)
                        continue
                    raise RateLimitError(
                        f"Rate limit exceeded for {operation_name} "
                        f"after {self.max_retries} retries"
                    ) from e

                # Server error - retry with backoff
                if status_code >= 500 and attempt < self.max_retries - 1:
                    logger.warning(
                        f"{operation_name} server error ({status_code}), "
                        f"retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue

                logger.error(f"{operation_name} failed with status {status_code}: {e}")
                raise FetchError(f"{operation_name} failed: {e}") from e

        raise FetchError(f"{operation_name} failed after all retries")

    def fetch_detail(self, external_id: str) -> Any:
        """Listings already carry full records; returns the reference as-is."""
        return external_id


class GmailConnector(GoogleConnector):
    """
    Gmail connector.

    Window mode lists conversational mail with a search query; cursor mode
    walks the mailbox history from a stored history id. Listings return
    message references; fetch_detail loads the headers.

    Usage:
        gmail = GmailConnector(credentials)
        page = gmail.list_page(ListMode.WINDOW, since)
        message = gmail.fetch_detail(page.records[0]["id"])
    """

    api_name = "gmail"
    api_version = "v1"
    expired_statuses = (404,)

    def __init__(self, credentials: Credentials, **kwargs: Any):
        super().__init__(credentials, **kwargs)
        self.page_size = min(self.page_size, 500)  # API max is 500
        self._profile: Optional[dict[str, Any]] = None
        self._window_cursor: Optional[str] = None

    def _get_profile(self, refresh: bool = False) -> dict[str, Any]:
        if self._profile is None or refresh:
            self._profile = self._retry_with_backoff(
                lambda: self.service.users().getProfile(userId="me").execute(),
                "gmail.get_profile",
            )
        return self._profile

    def _current_history_id(self) -> Optional[str]:
        return str(self._get_profile(refresh=True).get("historyId") or "") or None

    @property
    def user_email(self) -> str:
        return str(self._get_profile().get("emailAddress", ""))

    def list_page(
        self,
        mode: ListMode,
        anchor: Union[str, datetime],
        page_token: Optional[str] = None,
    ) -> Page:
        if mode is ListMode.CURSOR:
            return self._list_history(str(anchor), page_token)
        return self._list_messages(window_anchor(anchor), page_token)

    def _list_messages(self, since: datetime, page_token: Optional[str]) -> Page:
        if not page_token:
            # Taken before listing so mail arriving mid-listing is replayed by history
            self._window_cursor = self._current_history_id()

        params: dict[str, Any] = {
            "userId": "me",
            "q": build_high_signal_query(since),
            "maxResults": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token

        response = self._retry_with_backoff(
            lambda: self.service.users().messages().list(**params).execute(),
            "gmail.list_messages",
        )
        next_page = response.get("nextPageToken")
        cursor = None
        if not next_page:
            cursor = self._window_cursor or self._current_history_id()
            self._window_cursor = None

        return Page(
            records=list(response.get("messages") or []),
            next_page_token=next_page,
            next_cursor=cursor,
        )

    def _list_history(self, history_id: str, page_token: Optional[str]) -> Page:
        params: dict[str, Any] = {
            "userId": "me",
            "startHistoryId": history_id,
            "historyTypes": ["messageAdded"],
            "maxResults": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token

        response = self._retry_with_backoff(
            lambda: self.service.users().history().list(**params).execute(),
            "gmail.list_history",
            cursor_mode=True,
        )

        seen: set[str] = set()
        records: list[dict[str, Any]] = []
        for entry in response.get("history") or []:
            for added in entry.get("messagesAdded") or []:
                message = added.get("message") or {}
                message_id = message.get("id")
                if not message_id or message_id in seen:
                    continue
                if EXCLUDED_LABELS & set(message.get("labelIds") or []):
                    continue
                seen.add(message_id)
                records.append(message)

        next_page = response.get("nextPageToken")
        return Page(
            records=records,
            next_page_token=next_page,
            next_cursor=None if next_page else str(response.get("historyId") or history_id),
        )

    def fetch_detail(self, external_id: str) -> MailMessage:
        """
        Fetch a message with its metadata headers.

        Raises:
            FetchError: If the message cannot be fetched
        """
        response = self._retry_with_backoff(
            lambda: self.service.users()
            .messages()
            .get(
                userId="me",
                id=external_id,
                format="metadata",
                metadataHeaders=MESSAGE_HEADERS,
            )
            .execute(),
            "gmail.get_message",
        )
        return MailMessage.from_api_response(response)


class CalendarConnector(GoogleConnector):
    """
    Google Calendar connector for the user's primary calendar.

    Recurring events are expanded into single instances.
    """

    api_name = "calendar"
    api_version = "v3"
    expired_statuses = (410,)
    calendar_id = "primary"

    def __init__(self, credentials: Credentials, **kwargs: Any):
        super().__init__(credentials, **kwargs)
        self.page_size = min(self.page_size, 2500)  # API max is 2500
        self._user_email: Optional[str] = None

    @property
    def user_email(self) -> str:
        """The primary calendar's id, which is the owner's email."""
        if self._user_email is None:
            calendar = self._retry_with_backoff(
                lambda: self.service.calendars().get(calendarId=self.calendar_id).execute(),
                "calendar.get_primary",
            )
            self._user_email = str(calendar.get("id", ""))
        return self._user_email

    def list_page(
        self,
        mode: ListMode,
        anchor: Union[str, datetime],
        page_token: Optional[str] = None,
    ) -> Page:
        params: dict[str, Any] = {
            "calendarId": self.calendar_id,
            "singleEvents": True,
            "maxResults": self.page_size,
        }
        if mode is ListMode.CURSOR:
            # syncToken cannot be combined with timeMin
            params["syncToken"] = str(anchor)
        else:
            params["timeMin"] = to_rfc3339(window_anchor(anchor))
        if page_token:
            params["pageToken"] = page_token

        response = self._retry_with_backoff(
            lambda: self.service.events().list(**params).execute(),
            "calendar.list_events",
            cursor_mode=mode is ListMode.CURSOR,
        )

        next_page = response.get("nextPageToken")
        return Page(
            records=[
                CalendarEvent.from_api_response(item)
                for item in response.get("items") or []
            ],
            next_page_token=next_page,
            next_cursor=None if next_page else response.get("nextSyncToken"),
        )


class PeopleConnector(GoogleConnector):
    """
    Google People connector for the user's contacts.

    The People API has no time filter, so window mode is a full listing;
    the ledger makes re-listing already imported people cheap.
    """

    api_name = "people"
    api_version = "v1"
    expired_statuses = (410,)

    def __init__(self, credentials: Credentials, **kwargs: Any):
        super().__init__(credentials, **kwargs)
        self.page_size = min(self.page_size, 1000)  # API max is 1000

    def _is_cursor_expired(self, error: HttpError) -> bool:
        if super()._is_cursor_expired(error):
            return True
        # Newer API versions answer 400 with an EXPIRED_SYNC_TOKEN reason
        return error.resp.status == 400 and "EXPIRED_SYNC_TOKEN" in str(
            error.error_details
        )

    def list_page(
        self,
        mode: ListMode,
        anchor: Union[str, datetime],
        page_token: Optional[str] = None,
    ) -> Page:
        params: dict[str, Any] = {
            "resourceName": "people/me",
            "pageSize": self.page_size,
            "personFields": PERSON_FIELDS,
        }
        if mode is ListMode.CURSOR:
            params["syncToken"] = str(anchor)
        else:
            params["requestSyncToken"] = True
        if page_token:
            params["pageToken"] = page_token

        response = self._retry_with_backoff(
            lambda: self.service.people().connections().list(**params).execute(),
            "people.list_connections",
            cursor_mode=mode is ListMode.CURSOR,
        )

        next_page = response.get("nextPageToken")
        return Page(
            records=[
                DirectoryPerson.from_api_response(person)
                for person in response.get("connections") or []
            ],
            next_page_token=next_page,
            next_cursor=None if next_page else response.get("nextSyncToken"),
        )
