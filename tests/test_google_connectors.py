"""
Unit tests for the Google connectors.

Tests listing, cursor handling and retry behavior with mocked Google API
service objects.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from pagen_sync.connectors.base import (
    ConnectorError,
    CursorExpiredError,
    FetchError,
    ListMode,
    RateLimitError,
    SourceConnector,
)
from pagen_sync.connectors.google import (
    DEFAULT_PAGE_SIZE,
    MESSAGE_HEADERS,
    PERSON_FIELDS,
    CalendarConnector,
    GmailConnector,
    GoogleConnector,
    PeopleConnector,
    build_high_signal_query,
    to_rfc3339,
)
from pagen_sync.sync.records import CalendarEvent, DirectoryPerson, MailMessage

SINCE = datetime(2026, 2, 1, 8, 30, tzinfo=timezone.utc)


def http_error(status, content=b"error"):
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.reason = "error"
    return HttpError(mock_resp, content)


def failing_then(result, *errors):
    """Build a side effect raising each error in turn, then returning result."""
    outcomes = list(errors) + [result]

    def side_effect(*args, **kwargs):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return side_effect


class TestHelpers:
    """Tests for module helpers."""

    def test_high_signal_query(self):
        """Test the window query targets conversations since the date."""
        assert build_high_signal_query(SINCE) == (
            "(from:me is:replied) OR (to:me is:replied) OR is:starred "
            "after:2026/02/01 -in:spam -in:trash"
        )

    def test_rfc3339_aware(self):
        """Test aware datetimes are converted to UTC with Z."""
        assert to_rfc3339(SINCE) == "2026-02-01T08:30:00Z"

    def test_rfc3339_naive(self):
        """Test naive datetimes are treated as UTC."""
        assert to_rfc3339(datetime(2026, 2, 1)) == "2026-02-01T00:00:00Z"


class TestGoogleConnectorBasics:
    """Tests for shared connector plumbing."""

    def test_defaults(self):
        """Test initialization defaults."""
        connector = CalendarConnector(MagicMock())
        assert connector.page_size == DEFAULT_PAGE_SIZE
        assert connector._service is None

    @pytest.mark.parametrize(
        "cls,cap", [(GmailConnector, 500), (CalendarConnector, 2500), (PeopleConnector, 1000)]
    )
    def test_page_size_capped(self, cls, cap):
        """Test page sizes are capped at each API's maximum."""
        assert cls(MagicMock(), page_size=10000).page_size == cap

    @patch("pagen_sync.connectors.google.build")
    def test_service_built_lazily(self, mock_build):
        """Test the service is built once with the connector's API."""
        creds = MagicMock()
        connector = PeopleConnector(creds)

        first = connector.service
        second = connector.service

        assert first is second
        mock_build.assert_called_once_with(
            "people", "v1", credentials=creds, cache_discovery=False
        )

    @patch("pagen_sync.connectors.google.build", side_effect=Exception("no network"))
    def test_service_build_failure(self, mock_build):
        """Test build failures raise ConnectorError."""
        with pytest.raises(ConnectorError, match="Failed to create API service"):
            GmailConnector(MagicMock()).service

    def test_fetch_detail_passthrough(self):
        """Test connectors with full listings return the reference."""
        assert CalendarConnector(MagicMock()).fetch_detail("ev1") == "ev1"

    @pytest.mark.parametrize("cls", [GmailConnector, CalendarConnector, PeopleConnector])
    def test_satisfies_protocol(self, cls):
        """Test every connector implements the protocol."""
        assert isinstance(cls(MagicMock(), service=MagicMock()), SourceConnector)


class TestRetryWithBackoff:
    """Tests for _retry_with_backoff."""

    @pytest.fixture
    def connector(self):
        return GoogleConnector(
            MagicMock(), max_retries=3, initial_retry_delay=1.0, max_retry_delay=1.5
        )

    @patch("pagen_sync.connectors.google.time.sleep")
    def test_rate_limit_retried(self, mock_sleep, connector):
        """Test 429 responses are retried with growing delays."""
        operation = MagicMock(
            side_effect=failing_then("ok", http_error(429), http_error(403))
        )

        assert connector._retry_with_backoff(operation, "op") == "ok"
        assert operation.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 1.5]

    @patch("pagen_sync.connectors.google.time.sleep")
    def test_rate_limit_exhausted(self, mock_sleep, connector):
        """Test persistent rate limiting raises RateLimitError."""
        operation = MagicMock(side_effect=http_error(429))

        with pytest.raises(RateLimitError, match="after 3 retries"):
            connector._retry_with_backoff(operation, "op")
        assert operation.call_count == 3

    def test_rate_limit_error_is_fetch_error(self):
        """Test rate limits are a kind of fetch failure."""
        assert issubclass(RateLimitError, FetchError)

    @patch("pagen_sync.connectors.google.time.sleep")
    def test_server_error_retried(self, mock_sleep, connector):
        """Test 5xx responses are retried."""
        operation = MagicMock(side_effect=failing_then({"a": 1}, http_error(503)))

        assert connector._retry_with_backoff(operation, "op") == {"a": 1}
        mock_sleep.assert_called_once_with(1.0)

    @patch("pagen_sync.connectors.google.time.sleep")
    def test_server_error_exhausted(self, mock_sleep, connector):
        """Test persistent server errors raise FetchError."""
        operation = MagicMock(side_effect=http_error(500))

        with pytest.raises(FetchError, match="op failed"):
            connector._retry_with_backoff(operation, "op")
        assert operation.call_count == 3

    @patch("pagen_sync.connectors.google.time.sleep")
    def test_client_error_not_retried(self, mock_sleep, connector):
        """Test other client errors fail immediately."""
        operation = MagicMock(side_effect=http_error(400))

        with pytest.raises(FetchError):
            connector._retry_with_backoff(operation, "op")
        assert operation.call_count == 1
        mock_sleep.assert_not_called()


class TestGmailConnector:
    """Tests for GmailConnector."""

    @pytest.fixture
    def service(self):
        service = MagicMock()
        users = service.users.return_value
        users.getProfile.return_value.execute.return_value = {
            "emailAddress": "me@example.com",
            "historyId": "9001",
        }
        return service

    @pytest.fixture
    def connector(self, service):
        return GmailConnector(MagicMock(), service=service)

    def test_user_email(self, connector):
        """Test the account address comes from the profile."""
        assert connector.user_email == "me@example.com"

    def test_window_listing(self, connector, service):
        """Test window mode searches with the high-signal query."""
        messages = service.users.return_value.messages.return_value
        messages.list.return_value.execute.return_value = {
            "messages": [{"id": "m1", "threadId": "t1"}],
            "nextPageToken": "p2",
        }

        page = connector.list_page(ListMode.WINDOW, SINCE)

        assert messages.list.call_args.kwargs == {
            "userId": "me",
            "q": build_high_signal_query(SINCE),
            "maxResults": 100,
        }
        assert page.records == [{"id": "m1", "threadId": "t1"}]
        assert page.next_page_token == "p2"
        assert page.next_cursor is None

    def test_window_last_page_returns_history_id(self, connector, service):
        """Test the final window page carries the current history id."""
        messages = service.users.return_value.messages.return_value
        messages.list.return_value.execute.return_value = {"resultSizeEstimate": 0}

        page = connector.list_page(ListMode.WINDOW, SINCE, page_token="p2")

        assert messages.list.call_args.kwargs["pageToken"] == "p2"
        assert page.records == []
        assert page.is_last
        assert page.next_cursor == "9001"

    def test_window_cursor_taken_before_listing(self, connector, service):
        """Test mail arriving during a window listing stays after the cursor."""
        users = service.users.return_value
        users.getProfile.return_value.execute.side_effect = [
            {"emailAddress": "me@example.com", "historyId": "9001"},
            {"emailAddress": "me@example.com", "historyId": "9050"},
        ]
        users.messages.return_value.list.return_value.execute.side_effect = [
            {"messages": [{"id": "m1"}], "nextPageToken": "p2"},
            {"messages": [{"id": "m2"}]},
        ]

        first = connector.list_page(ListMode.WINDOW, SINCE)
        last = connector.list_page(ListMode.WINDOW, SINCE, page_token=first.next_page_token)

        assert first.next_cursor is None
        assert last.next_cursor == "9001"
        assert users.getProfile.return_value.execute.call_count == 1

    def test_window_needs_datetime_anchor(self, connector, service):
        """Test a string anchor is rejected in window mode."""
        with pytest.raises(TypeError, match="datetime anchor"):
            connector.list_page(ListMode.WINDOW, "9001")
        service.users.return_value.messages.return_value.list.assert_not_called()

        assert page.next_cursor == "9001"

    def test_history_listing(self, connector, service):
        """Test cursor mode walks added messages from the history id."""
        history = service.users.return_value.history.return_value
        history.list.return_value.execute.return_value = {
            "history": [
                {"messagesAdded": [{"message": {"id": "m1", "labelIds": ["INBOX"]}}]},
                {
                    "messagesAdded": [
                        {"message": {"id": "m1", "labelIds": ["INBOX"]}},
                        {"message": {"id": "m2", "labelIds": ["SPAM"]}},
                        {"message": {"id": "m3", "labelIds": ["DRAFT", "SENT"]}},
                        {"message": {"id": "m4", "labelIds": ["SENT"]}},
                    ]
                },
                {"labelsAdded": [{"message": {"id": "m5"}}]},
            ],
            "historyId": "9100",
        }

        page = connector.list_page(ListMode.CURSOR, "9000")

        assert history.list.call_args.kwargs == {
            "userId": "me",
            "startHistoryId": "9000",
            "historyTypes": ["messageAdded"],
            "maxResults": 100,
        }
        assert [r["id"] for r in page.records] == ["m1", "m4"]
        assert page.next_cursor == "9100"

    def test_history_without_changes_keeps_cursor(self, connector, service):
        """Test an empty history response keeps the start id."""
        history = service.users.return_value.history.return_value
        history.list.return_value.execute.return_value = {}

        page = connector.list_page(ListMode.CURSOR, "9000")

        assert page.records == []
        assert page.next_cursor == "9000"

    def test_history_id_too_old(self, connector, service):
        """Test a 404 on history listing means the cursor expired."""
        history = service.users.return_value.history.return_value
        history.list.return_value.execute.side_effect = http_error(404)

        with pytest.raises(CursorExpiredError):
            connector.list_page(ListMode.CURSOR, "1")

    def test_window_404_is_fetch_error(self, connector, service):
        """Test a 404 outside cursor mode is an ordinary failure."""
        messages = service.users.return_value.messages.return_value
        messages.list.return_value.execute.side_effect = http_error(404)

        with pytest.raises(FetchError):
            connector.list_page(ListMode.WINDOW, SINCE)

    def test_fetch_detail(self, connector, service):
        """Test messages are fetched with their metadata headers."""
        messages = service.users.return_value.messages.return_value
        messages.get.return_value.execute.return_value = {
            "id": "m1",
            "threadId": "t1",
            "payload": {"headers": [{"name": "Subject", "value": "Hello there"}]},
        }

        message = connector.fetch_detail("m1")

        assert isinstance(message, MailMessage)
        assert message.subject == "Hello there"
        assert messages.get.call_args.kwargs == {
            "userId": "me",
            "id": "m1",
            "format": "metadata",
            "metadataHeaders": MESSAGE_HEADERS,
        }

    def test_fetch_detail_missing_message(self, connector, service):
        """Test a deleted message raises FetchError."""
        messages = service.users.return_value.messages.return_value
        messages.get.return_value.execute.side_effect = http_error(404)

        with pytest.raises(FetchError):
            connector.fetch_detail("gone")


class TestCalendarConnector:
    """Tests for CalendarConnector."""

    @pytest.fixture
    def service(self):
        return MagicMock()

    @pytest.fixture
    def connector(self, service):
        return CalendarConnector(MagicMock(), service=service)

    def test_user_email_from_primary_calendar(self, connector, service):
        """Test the primary calendar id is the account address."""
        service.calendars.return_value.get.return_value.execute.return_value = {
            "id": "me@example.com"
        }

        assert connector.user_email == "me@example.com"
        assert connector.user_email == "me@example.com"
        assert service.calendars.return_value.get.return_value.execute.call_count == 1

    def test_window_listing(self, connector, service):
        """Test window mode lists single events since the anchor."""
        events = service.events.return_value
        events.list.return_value.execute.return_value = {
            "items": [{"id": "ev1", "summary": "Kickoff"}],
            "nextSyncToken": "sync-1",
        }

        page = connector.list_page(ListMode.WINDOW, SINCE)

        assert events.list.call_args.kwargs == {
            "calendarId": "primary",
            "singleEvents": True,
            "maxResults": 100,
            "timeMin": "2026-02-01T08:30:00Z",
        }
        assert isinstance(page.records[0], CalendarEvent)
        assert page.records[0].summary == "Kickoff"
        assert page.next_cursor == "sync-1"

    def test_window_needs_datetime_anchor(self, connector, service):
        """Test a sync token passed as a window anchor is rejected."""
        with pytest.raises(TypeError, match="got str"):
            connector.list_page(ListMode.WINDOW, "sync-1")
        service.events.return_value.list.assert_not_called()

    def test_cursor_listing(self, connector, service):
        """Test cursor mode sends the sync token without a time bound."""
        events = service.events.return_value
        events.list.return_value.execute.return_value = {
            "items": [],
            "nextPageToken": "p2",
            "nextSyncToken": "ignored",
        }

        page = connector.list_page(ListMode.CURSOR, "sync-1")

        kwargs = events.list.call_args.kwargs
        assert kwargs["syncToken"] == "sync-1"
        assert "timeMin" not in kwargs
        assert page.next_page_token == "p2"
        assert page.next_cursor is None

    def test_gone_sync_token(self, connector, service):
        """Test 410 Gone in cursor mode means the token expired."""
        service.events.return_value.list.return_value.execute.side_effect = (
            http_error(410)
        )

        with pytest.raises(CursorExpiredError):
            connector.list_page(ListMode.CURSOR, "sync-1")


class TestPeopleConnector:
    """Tests for PeopleConnector."""

    @pytest.fixture
    def service(self):
        return MagicMock()

    @pytest.fixture
    def connector(self, service):
        return PeopleConnector(MagicMock(), service=service)

    def connections(self, service):
        return service.people.return_value.connections.return_value

    def test_window_listing_requests_sync_token(self, connector, service):
        """Test a full listing asks for a sync token."""
        self.connections(service).list.return_value.execute.return_value = {
            "connections": [
                {
                    "resourceName": "people/c1",
                    "names": [{"displayName": "Alice"}],
                    "emailAddresses": [{"value": "alice@acme.com"}],
                }
            ],
            "nextSyncToken": "people-sync",
        }

        page = connector.list_page(ListMode.WINDOW, SINCE)

        assert self.connections(service).list.call_args.kwargs == {
            "resourceName": "people/me",
            "pageSize": 100,
            "personFields": PERSON_FIELDS,
            "requestSyncToken": True,
        }
        assert isinstance(page.records[0], DirectoryPerson)
        assert page.records[0].email == "alice@acme.com"
        assert page.next_cursor == "people-sync"

    def test_cursor_listing(self, connector, service):
        """Test cursor mode passes the sync token and page token."""
        self.connections(service).list.return_value.execute.return_value = {}

        page = connector.list_page(ListMode.CURSOR, "people-sync", page_token="p3")

        kwargs = self.connections(service).list.call_args.kwargs
        assert kwargs["syncToken"] == "people-sync"
        assert kwargs["pageToken"] == "p3"
        assert "requestSyncToken" not in kwargs
        assert page.records == []

    def test_expired_sync_token_410(self, connector, service):
        """Test 410 in cursor mode means the token expired."""
        self.connections(service).list.return_value.execute.side_effect = http_error(410)

        with pytest.raises(CursorExpiredError):
            connector.list_page(ListMode.CURSOR, "people-sync")

    def test_expired_sync_token_400(self, connector, service):
        """Test the EXPIRED_SYNC_TOKEN failure reason means the token expired."""
        content = json.dumps(
            {
                "error": {
                    "code": 400,
                    "message": "Sync token is expired.",
                    "status": "FAILED_PRECONDITION",
                    "details": [
                        {
                            "@type": "type.googleapis.com/google.rpc.ErrorInfo",
                            "reason": "EXPIRED_SYNC_TOKEN",
                        }
                    ],
                }
            }
        ).encode("utf-8")
        self.connections(service).list.return_value.execute.side_effect = http_error(
            400, content
        )

        with pytest.raises(CursorExpiredError):
            connector.list_page(ListMode.CURSOR, "people-sync")

    def test_other_400_is_fetch_error(self, connector, service):
        """Test ordinary bad requests are not treated as expiry."""
        self.connections(service).list.return_value.execute.side_effect = http_error(400)

        with pytest.raises(FetchError):
            connector.list_page(ListMode.CURSOR, "people-sync")

    def test_410_in_window_mode_is_fetch_error(self, connector, service):
        """Test expiry statuses only matter when a cursor was sent."""
        self.connections(service).list.return_value.execute.side_effect = http_error(410)

        with pytest.raises(FetchError):
            connector.list_page(ListMode.WINDOW, SINCE)
