"""
Per-source sync state and run locks.

The sync_state row for a source is the resumption point of truth: it holds
the opaque cursor, the status, the last successful sync time and the last
error message. Rows are created lazily on the first run and never deleted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pagen_sync.storage.db import (
    SyncDatabase,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)
from pagen_sync.sync.errors import SyncInProgressError

logger = logging.getLogger(__name__)

# Default lifetime of a run lock before another run may take it over
DEFAULT_LOCK_TTL = timedelta(hours=1)


class SyncStatus(str, Enum):
    """Lifecycle status of a source."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class SyncState:
    """Persisted sync state for one source."""

    source: str
    status: SyncStatus = SyncStatus.IDLE
    cursor: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def has_cursor(self) -> bool:
        return bool(self.cursor)


def _row_to_state(row) -> SyncState:
    return SyncState(
        source=row["source"],
        status=SyncStatus(row["status"]),
        cursor=row["cursor"],
        last_sync_at=from_db_timestamp(row["last_sync_at"]),
        last_error=row["last_error"],
        updated_at=from_db_timestamp(row["updated_at"]),
    )


class SyncStateStore:
    """
    Store for source status, cursor and last error.

    State machine: idle -> syncing -> {idle, error}. Moving to error keeps
    the cursor and last_sync_at so the next run can still go incremental.

    Usage:
        store = SyncStateStore(database)
        store.mark_syncing("gmail")
        ...
        store.mark_idle("gmail", cursor="12345", synced_at=started_at)
    """

    def __init__(self, database: SyncDatabase):
        self.database = database

    def get(self, source: str) -> Optional[SyncState]:
        """
        Get sync state for a source.

        Args:
            source: Source name (e.g. 'gmail', 'calendar', 'contacts')

        Returns:
            SyncState, or None if the source has never been synced
        """
        with self.database.connection() as conn:
            row = conn.execute(
                """
                SELECT source, status, cursor, last_sync_at, last_error, updated_at
                FROM sync_state WHERE source = ?
                """,
                (source,),
            ).fetchone()
            return _row_to_state(row) if row else None

    def all(self) -> list[SyncState]:
        """Get sync state for every source, ordered by name."""
        with self.database.connection() as conn:
            rows = conn.execute(
                """
                SELECT source, status, cursor, last_sync_at, last_error, updated_at
                FROM sync_state ORDER BY source
                """
            ).fetchall()
            return [_row_to_state(row) for row in rows]

    def mark_syncing(self, source: str) -> None:
        """Set status to syncing, creating the row on first use."""
        now = to_db_timestamp(utcnow())
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (source, status, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(source) DO UPDATE SET
                    status = excluded.status,
                    updated_at = excluded.updated_at
                """,
                (source, SyncStatus.SYNCING.value, now, now),
            )

    def mark_idle(
        self,
        source: str,
        cursor: Optional[str] = None,
        synced_at: Optional[datetime] = None,
        clear_cursor: bool = False,
    ) -> None:
        """
        Record a successful run.

        Args:
            source: Source name
            cursor: New cursor from the final page; the stored cursor is kept
                when None unless clear_cursor is set
            synced_at: Time the run started (defaults to now)
            clear_cursor: Drop the stored cursor when no new one is supplied
        """
        synced = to_db_timestamp(synced_at or utcnow())
        now = to_db_timestamp(utcnow())
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_state
                    (source, status, cursor, last_sync_at, last_error,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, NULL, ?, ?)
                ON CONFLICT(source) DO UPDATE SET
                    status = excluded.status,
                    cursor = CASE
                        WHEN excluded.cursor IS NOT NULL THEN excluded.cursor
                        WHEN ? THEN NULL
                        ELSE sync_state.cursor
                    END,
                    last_sync_at = excluded.last_sync_at,
                    last_error = NULL,
                    updated_at = excluded.updated_at
                """,
                (
                    source,
                    SyncStatus.IDLE.value,
                    cursor,
                    synced,
                    now,
                    now,
                    1 if clear_cursor else 0,
                ),
            )

    def mark_error(self, source: str, message: str) -> None:
        """
        Record a failed run, preserving cursor and last_sync_at.

        Args:
            source: Source name
            message: Failure message shown by `pagen-sync status`
        """
        now = to_db_timestamp(utcnow())
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_state
                    (source, status, last_error, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(source) DO UPDATE SET
                    status = excluded.status,
                    last_error = excluded.last_error,
                    updated_at = excluded.updated_at
                """,
                (source, SyncStatus.ERROR.value, message, now, now),
            )

    def reset(self, source: Optional[str] = None) -> int:
        """
        Clear the cursor and error for one or all sources and set them idle.

        The next non-initial run falls back to a time window anchored at
        the last sync time.

        Args:
            source: Source to reset, or None for every source

        Returns:
            Number of sources reset
        """
        now = to_db_timestamp(utcnow())
        with self.database.connection() as conn:
            if source is None:
                cursor = conn.execute(
                    """
                    UPDATE sync_state
                    SET status = 'idle', cursor = NULL, last_error = NULL,
                        updated_at = ?
                    """,
                    (now,),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE sync_state
                    SET status = 'idle', cursor = NULL, last_error = NULL,
                        updated_at = ?
                    WHERE source = ?
                    """,
                    (now, source),
                )
            return cursor.rowcount

    # =========================================================================
    # Run Locks
    # =========================================================================

    def acquire_lock(
        self, source: str, owner: str, ttl: timedelta = DEFAULT_LOCK_TTL
    ) -> None:
        """
        Take the per-source run lock.

        An expired lock left behind by a crashed run is taken over.

        Args:
            source: Source name
            owner: Unique token identifying this run
            ttl: Lock lifetime

        Raises:
            SyncInProgressError: If another live run holds the lock
        """
        now = utcnow()
        with self.database.connection() as conn:
            conn.execute(
                "DELETE FROM sync_locks WHERE source = ? AND expires_at <= ?",
                (source, to_db_timestamp(now)),
            )
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO sync_locks
                    (source, owner, acquired_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (source, owner, to_db_timestamp(now), to_db_timestamp(now + ttl)),
            )
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT owner, acquired_at FROM sync_locks WHERE source = ?",
                    (source,),
                ).fetchone()
                held_since = row["acquired_at"] if row else "unknown"
                raise SyncInProgressError(
                    f"A {source} sync is already running (since {held_since})"
                )
        logger.debug(f"Acquired {source} run lock ({owner})")

    def release_lock(self, source: str, owner: str) -> None:
        """Release the run lock if this run still owns it."""
        with self.database.connection() as conn:
            conn.execute(
                "DELETE FROM sync_locks WHERE source = ? AND owner = ?",
                (source, owner),
            )
        logger.debug(f"Released {source} run lock ({owner})")

    def is_locked(self, source: str) -> bool:
        """Check whether a live run lock exists for the source."""
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM sync_locks WHERE source = ? AND expires_at > ?",
                (source, to_db_timestamp(utcnow())),
            ).fetchone()
            return row is not None
