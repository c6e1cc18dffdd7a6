"""
Exceptions raised by the import engine and importers.

Connector-level failures (cursor invalidation, fetch failures) live in
pagen_sync.connectors.base alongside the connector protocol.
"""


class SyncError(Exception):
    """Base exception for import run failures."""

    pass


class SyncInProgressError(SyncError):
    """Raised when a run is started while another run holds the source lock."""

    pass


class RecordError(SyncError):
    """
    Raised while applying a single external record.

    The record is skipped and tallied under ``reason``; it gets no ledger
    entry, so the next run retries it.
    """

    reason = "failed"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class RecordValidationError(RecordError):
    """Raised for malformed records (bad date, missing identity email)."""

    reason = "invalid record"


class RecordMappingError(RecordError):
    """Raised when a record cannot be mapped from its resource or written to the store."""

    reason = "failed"
