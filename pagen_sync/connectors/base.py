"""
Source connector protocol.

A connector pages through one external source either from an opaque cursor
(changes since the last run) or from a lower-bound timestamp (time window).
Failures are reported as typed exceptions so the engine can tell a stale
cursor apart from any other fetch failure.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol, Union, runtime_checkable


class ConnectorError(Exception):
    """Base exception for source connector failures."""

    pass


class CursorExpiredError(ConnectorError):
    """Raised when the source no longer accepts the stored cursor."""

    pass


class FetchError(ConnectorError):
    """Raised when a page or record cannot be fetched from the source."""

    pass


class RateLimitError(FetchError):
    """Raised when the source keeps rejecting requests after all retries."""

    pass


class ListMode(str, Enum):
    """How a connector positions a listing."""

    CURSOR = "cursor"
    WINDOW = "window"


@dataclass
class Page:
    """
    One page of results from a connector.

    Attributes:
        records: Records on this page (source-specific objects)
        next_page_token: Continuation token, or None on the final page
        next_cursor: Cursor to persist; only meaningful on the final page
    """

    records: list[Any] = field(default_factory=list)
    next_page_token: Optional[str] = None
    next_cursor: Optional[str] = None

    @property
    def is_last(self) -> bool:
        return not self.next_page_token


@runtime_checkable
class SourceConnector(Protocol):
    """
    Interface the import engine needs from a source.

    ``anchor`` is the stored cursor in CURSOR mode and the window start
    (an aware datetime) in WINDOW mode.
    """

    def list_page(
        self,
        mode: ListMode,
        anchor: Union[str, datetime],
        page_token: Optional[str] = None,
    ) -> Page:
        """
        Fetch one page.

        Raises:
            CursorExpiredError: If the cursor is expired or unrecognized
            FetchError: For any other failure
        """
        ...

    def fetch_detail(self, external_id: str) -> Any:
        """
        Fetch the full record for a lightweight listing reference.

        Connectors whose listings already carry full records return the
        reference unchanged.

        Raises:
            FetchError: If the record cannot be fetched
        """
        ...
