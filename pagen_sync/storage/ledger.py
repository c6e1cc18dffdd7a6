"""
Import ledger: the idempotency gate for external records.

One row per (source, external id) that has been fully applied. Records are
checked before any side effect and recorded after all side effects succeed.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from pagen_sync.storage.db import SyncDatabase, to_db_timestamp, utcnow

logger = logging.getLogger(__name__)


class SyncLedger:
    """
    Append-only mapping of external record ids to local entities.

    Usage:
        ledger = SyncLedger(database)
        if not ledger.exists("gmail", message_id):
            ...
            ledger.record("gmail", message_id, "interaction", interaction.id)
    """

    def __init__(self, database: SyncDatabase):
        self.database = database

    def exists(self, source: str, external_id: str) -> bool:
        """
        Check whether an external record has already been imported.

        Args:
            source: Source name
            external_id: Source-issued record id

        Returns:
            True if a ledger entry exists
        """
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM sync_ledger WHERE source = ? AND external_id = ?",
                (source, external_id),
            ).fetchone()
            return row is not None

    def record(
        self,
        source: str,
        external_id: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Record that an external record was applied.

        Inserting an existing key is a silent no-op.

        Args:
            source: Source name
            external_id: Source-issued record id
            entity_type: Type of the mapped local entity ('contact', 'interaction')
            entity_id: Id of the mapped local entity
            metadata: Optional JSON-serializable details (e.g. subject)

        Returns:
            True if a new entry was written, False if it already existed
        """
        with self.database.connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO sync_ledger
                    (source, external_id, entity_type, entity_id, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    source,
                    external_id,
                    entity_type,
                    entity_id,
                    json.dumps(metadata) if metadata else None,
                    to_db_timestamp(utcnow()),
                ),
            )
            return cursor.rowcount > 0

    def get(self, source: str, external_id: str) -> Optional[dict[str, Any]]:
        """Get the ledger entry for an external record, or None."""
        with self.database.connection() as conn:
            row = conn.execute(
                """
                SELECT source, external_id, entity_type, entity_id, metadata, created_at
                FROM sync_ledger WHERE source = ? AND external_id = ?
                """,
                (source, external_id),
            ).fetchone()
            if not row:
                return None
            entry = dict(row)
            entry["metadata"] = json.loads(entry["metadata"]) if entry["metadata"] else {}
            return entry

    def count(self, source: Optional[str] = None) -> int:
        """
        Count ledger entries.

        Args:
            source: Restrict to one source, or None for all

        Returns:
            Number of entries
        """
        with self.database.connection() as conn:
            if source is None:
                row = conn.execute("SELECT COUNT(*) FROM sync_ledger").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM sync_ledger WHERE source = ?", (source,)
                ).fetchone()
            result: int = row[0]
            return result

    def prune(self, older_than: datetime, source: Optional[str] = None) -> int:
        """
        Delete ledger entries created before a cutoff.

        Only used when ledger retention is configured. A pruned record that
        shows up again in a fetch window is re-applied; interaction writes
        are keyed by (source, external id, contact) so this does not
        duplicate history.

        Args:
            older_than: Entries created before this time are removed
            source: Restrict to one source, or None for all

        Returns:
            Number of entries deleted
        """
        cutoff = to_db_timestamp(older_than)
        with self.database.connection() as conn:
            if source is None:
                cursor = conn.execute(
                    "DELETE FROM sync_ledger WHERE created_at < ?", (cutoff,)
                )
            else:
                cursor = conn.execute(
                    "DELETE FROM sync_ledger WHERE created_at < ? AND source = ?",
                    (cutoff, source),
                )
            deleted = cursor.rowcount
        logger.info(f"Pruned {deleted} ledger entries older than {cutoff}")
        return deleted
