"""
pagen_sync.connectors - Source connectors

Adapters that page through external sources (mailbox, calendar,
contacts directory) for the import engine.
"""

from pagen_sync.connectors.base import (
    ConnectorError,
    CursorExpiredError,
    FetchError,
    ListMode,
    Page,
    RateLimitError,
    SourceConnector,
)

__all__ = [
    "ConnectorError",
    "CursorExpiredError",
    "FetchError",
    "ListMode",
    "Page",
    "RateLimitError",
    "SourceConnector",
]
