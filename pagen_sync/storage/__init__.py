"""
pagen_sync.storage - Persistence

SQLite-backed sync state, import ledger and local entity store.
"""

from pagen_sync.storage.db import SyncDatabase

__all__ = ["SyncDatabase"]
