"""
SQLite database module for sync state and the local entity store.

Provides persistent storage for per-source sync state, the import ledger,
run locks, contacts, organizations, interactions and queued outbound changes.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

# SQL Schema for sync bookkeeping and local entities
SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY,
    source TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'idle',
    cursor TEXT,
    last_sync_at TEXT,
    last_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(source)
);

CREATE INDEX IF NOT EXISTS idx_sync_state_source ON sync_state(source);

CREATE TABLE IF NOT EXISTS sync_ledger (
    id INTEGER PRIMARY KEY,
    source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(source, external_id)
);

CREATE INDEX IF NOT EXISTS idx_sync_ledger_lookup
    ON sync_ledger(source, external_id);

CREATE TABLE IF NOT EXISTS sync_locks (
    source TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    acquired_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS organizations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    domain TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(name)
);

CREATE TABLE IF NOT EXISTS contacts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    organization_id TEXT REFERENCES organizations(id),
    notes TEXT,
    last_contacted_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_contacts_email
    ON contacts(email) WHERE email IS NOT NULL AND email != '';

CREATE TABLE IF NOT EXISTS interactions (
    id TEXT PRIMARY KEY,
    contact_id TEXT NOT NULL REFERENCES contacts(id),
    kind TEXT NOT NULL,
    occurred_at TEXT NOT NULL,
    notes TEXT,
    metadata TEXT,
    source TEXT,
    external_id TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(source, external_id, contact_id)
);

CREATE INDEX IF NOT EXISTS idx_interactions_contact ON interactions(contact_id);

CREATE TABLE IF NOT EXISTS outbound_changes (
    id INTEGER PRIMARY KEY,
    entity TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    op TEXT NOT NULL,
    payload TEXT,
    queued_at TEXT NOT NULL,
    pushed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_outbound_pending ON outbound_changes(pushed_at);
"""


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime for storage.

    Naive datetimes are assumed to be UTC.

    Args:
        value: Datetime to serialize, or None

    Returns:
        ISO 8601 string in UTC, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a stored timestamp back into an aware UTC datetime.

    Args:
        value: ISO 8601 string as written by to_db_timestamp, or None

    Returns:
        Timezone-aware datetime, or None
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SyncDatabase:
    """
    SQLite database manager shared by the sync state store, the ledger
    and the entity store.

    Usage:
        db = SyncDatabase('/path/to/pagen.db')
        db.initialize()

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection to ensure
        schema persists across operations. For file databases, creates
        a new connection each time.

        Returns:
            sqlite3.Connection: Database connection
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(
                    ":memory:", check_same_thread=False
                )
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection
        else:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success, rolls back on any exception.

        Yields:
            sqlite3.Connection: Database connection

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM sync_state")
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """
        Initialize the database schema.

        Safe to call repeatedly; every statement is IF NOT EXISTS.
        """
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    def vacuum(self) -> None:
        """
        Vacuum the database to reclaim space and optimize performance.
        """
        with self.connection() as conn:
            conn.execute("VACUUM")

    def __repr__(self) -> str:
        return f"SyncDatabase(db_path={self.db_path!r})"
