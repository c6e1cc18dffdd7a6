"""
Incremental import engine.

Implements the fetch algorithm shared by every source: choose cursor or
time-window mode, page through the connector, gate every record on the
import ledger, filter, resolve identities, write entities, record the
ledger entry, and finally persist the new cursor and status.

Source importers subclass IncrementalImporter and supply the record
specific pieces (external id, filter, record -> entity mapping).
"""

import logging
import sqlite3
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Union

from pagen_sync.connectors.base import (
    CursorExpiredError,
    FetchError,
    ListMode,
    SourceConnector,
)
from pagen_sync.storage.db import SyncDatabase, utcnow
from pagen_sync.storage.entities import EntityStore
from pagen_sync.storage.ledger import SyncLedger
from pagen_sync.storage.state import DEFAULT_LOCK_TTL, SyncStateStore
from pagen_sync.sync.contact import Contact
from pagen_sync.sync.errors import (
    RecordError,
    RecordMappingError,
    RecordValidationError,
)
from pagen_sync.sync.filters import (
    REASON_ALREADY_IMPORTED,
    REASON_FAILED,
    REASON_NO_CONTACT_EMAIL,
    FilterResult,
)
from pagen_sync.sync.matcher import (
    IdentityMatcher,
    derive_organization_name,
    is_consumer_domain,
)
from pagen_sync.utils.normalization import (
    extract_domain,
    is_valid_email,
    normalize_email,
)

logger = logging.getLogger(__name__)


@dataclass
class ImportStats:
    """
    Counts from one import run.

    Every fetched record ends up either processed or under exactly one
    skip reason, so ``fetched == processed + total_skipped`` always holds.
    """

    fetched: int = 0
    processed: int = 0
    contacts_created: int = 0
    contacts_updated: int = 0
    interactions_logged: int = 0
    pages: int = 0
    skipped: Counter = field(default_factory=Counter)

    def skip(self, reason: str) -> None:
        self.skipped[reason] += 1

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped.values())

    def is_consistent(self) -> bool:
        return self.fetched == self.processed + self.total_skipped


@dataclass
class ImportResult:
    """
    Result of an import run.

    Attributes:
        source: Source name
        mode: Mode the run finished in
        started_at: Run start time; persisted as the last sync time
        stats: Run counts
        cursor: Cursor persisted at the end of the run, if any
        fell_back: True if an expired cursor forced a time-window fetch
    """

    source: str
    mode: ListMode
    started_at: datetime
    stats: ImportStats = field(default_factory=ImportStats)
    cursor: Optional[str] = None
    fell_back: bool = False

    def summary(self) -> str:
        """Generate a human-readable summary of the run."""
        stats = self.stats
        lines = [f"Fetched {stats.fetched} records from {self.source}"]
        if self.fell_back:
            lines.append("  Sync cursor had expired; used a time-window fetch")
        for reason, count in sorted(stats.skipped.items()):
            lines.append(f"  Skipped {count} {reason}")
        if stats.processed == 0:
            lines.append("  No new records to import (all up to date)")
        else:
            lines.append(f"  Processed {stats.processed} records")
            if stats.contacts_created:
                lines.append(f"  Created {stats.contacts_created} new contacts")
            if stats.contacts_updated:
                lines.append(f"  Updated {stats.contacts_updated} contacts")
            if stats.interactions_logged:
                lines.append(f"  Logged {stats.interactions_logged} interactions")
        return "\n".join(lines)


@dataclass
class AppliedRecord:
    """The local entity an external record was mapped to."""

    entity_type: str
    entity_id: str
    metadata: dict[str, Any] = field(default_factory=dict)


class IncrementalImporter:
    """
    Base class for source importers.

    Subclasses set ``source`` and ``bootstrap_lookback`` and implement
    ``external_id``, ``check`` and ``apply``. ``load`` may be overridden
    for sources whose listings only carry references.

    Usage:
        importer = MailboxImporter(connector, database)
        result = importer.run(initial=False)
        print(result.summary())
    """

    source: str = ""
    bootstrap_lookback: timedelta = timedelta(days=30)

    def __init__(
        self,
        connector: SourceConnector,
        database: SyncDatabase,
        store: Optional[EntityStore] = None,
        lookback: Optional[timedelta] = None,
        lock_ttl: timedelta = DEFAULT_LOCK_TTL,
        ledger_retention: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the importer.

        Args:
            connector: Source connector to page through
            database: Initialized SyncDatabase holding state and ledger
            store: Entity store to write to (defaults to one on `database`)
            lookback: Override for the bootstrap lookback window
            lock_ttl: Lifetime of the per-source run lock
            ledger_retention: Prune ledger entries older than this after a
                successful run; None keeps the ledger forever
            clock: Source of the current time
        """
        self.connector = connector
        self.database = database
        self.store = store or EntityStore(database)
        self.state = SyncStateStore(database)
        self.ledger = SyncLedger(database)
        if lookback is not None:
            self.bootstrap_lookback = lookback
        self.lock_ttl = lock_ttl
        self.ledger_retention = ledger_retention
        self.clock = clock
        self.matcher = IdentityMatcher()

    # =========================================================================
    # Source hooks
    # =========================================================================

    def external_id(self, record: Any) -> str:
        """Return the ledger key of a listed record."""
        raise NotImplementedError

    def load(self, record: Any) -> Any:
        """Turn a listed record into the full record to filter and apply."""
        return record

    def check(self, record: Any) -> FilterResult:
        """Decide whether a record is worth importing."""
        return FilterResult.accept()

    def apply(self, record: Any, stats: ImportStats) -> AppliedRecord:
        """
        Write the entities for an accepted record.

        Raises:
            RecordValidationError: If the record is unusable (skip with reason)
            RecordMappingError: If the record cannot be written
        """
        raise NotImplementedError

    # =========================================================================
    # Run
    # =========================================================================

    def run(
        self, initial: bool = False, snapshot: Optional[Iterable[Contact]] = None
    ) -> ImportResult:
        """
        Run one import.

        Args:
            initial: Ignore any stored cursor and fetch the bootstrap window
            snapshot: Contacts to seed the identity matcher with (defaults to
                every contact in the store)

        Returns:
            ImportResult with counts

        Raises:
            SyncInProgressError: If another run for this source is active
            FetchError: If the source fails for any reason other than an
                expired cursor; the stored cursor is left untouched
        """
        owner = uuid.uuid4().hex
        self.state.acquire_lock(self.source, owner, self.lock_ttl)
        try:
            return self._run_locked(initial, snapshot)
        finally:
            self.state.release_lock(self.source, owner)

    def _run_locked(
        self, initial: bool, snapshot: Optional[Iterable[Contact]]
    ) -> ImportResult:
        started_at = self.clock()
        prior = self.state.get(self.source)
        self.state.mark_syncing(self.source)

        bootstrap_anchor = started_at - self.bootstrap_lookback
        fallback_anchor = (
            prior.last_sync_at if prior and prior.last_sync_at else bootstrap_anchor
        )

        mode: ListMode
        anchor: Union[str, datetime]
        if initial:
            mode, anchor = ListMode.WINDOW, bootstrap_anchor
        elif prior is not None and prior.cursor:
            mode, anchor = ListMode.CURSOR, prior.cursor
        else:
            mode, anchor = ListMode.WINDOW, fallback_anchor

        result = ImportResult(source=self.source, mode=mode, started_at=started_at)
        logger.info(
            f"Starting {self.source} import (initial={initial}, mode={mode.value})"
        )

        try:
            self.matcher = IdentityMatcher(
                snapshot if snapshot is not None else self.store.list_contacts()
            )
            self._paginate(result, anchor, fallback_anchor)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"{self.source} import failed: {message}")
            self.state.mark_error(self.source, message)
            raise

        self.state.mark_idle(
            self.source,
            cursor=result.cursor,
            synced_at=started_at,
            clear_cursor=result.fell_back,
        )

        if self.ledger_retention is not None:
            self.ledger.prune(started_at - self.ledger_retention, source=self.source)

        stats = result.stats
        logger.info(
            f"Finished {self.source} import: fetched={stats.fetched} "
            f"processed={stats.processed} skipped={stats.total_skipped}"
        )
        return result

    def _paginate(
        self,
        result: ImportResult,
        anchor: Union[str, datetime],
        fallback_anchor: datetime,
    ) -> None:
        stats = result.stats
        page_token: Optional[str] = None

        while True:
            try:
                page = self.connector.list_page(result.mode, anchor, page_token)
            except CursorExpiredError as e:
                if result.mode is not ListMode.CURSOR:
                    raise FetchError(
                        f"{self.source} rejected a time-window fetch: {e}"
                    ) from e
                logger.warning(
                    f"{self.source} sync cursor expired, falling back to "
                    f"time-window fetch since {fallback_anchor.isoformat()}"
                )
                result.mode = ListMode.WINDOW
                result.fell_back = True
                anchor = fallback_anchor
                page_token = None
                continue
            except FetchError:
                raise
            except Exception as e:
                raise FetchError(f"{self.source} listing failed: {e}") from e

            stats.pages += 1
            stats.fetched += len(page.records)
            for record in page.records:
                self._process(record, stats)

            if page.is_last:
                result.cursor = page.next_cursor
                break

            page_token = page.next_page_token
            logger.info(
                f"{self.source}: page {stats.pages} done, "
                f"processed {stats.processed} records so far"
            )

    def _process(self, listed: Any, stats: ImportStats) -> None:
        """Apply one listed record, tallying it exactly once."""
        try:
            external_id = self.external_id(listed)
        except (KeyError, AttributeError, TypeError) as e:
            logger.warning(f"Skipping {self.source} record without an id: {e}")
            stats.skip(REASON_FAILED)
            return

        try:
            if self.ledger.exists(self.source, external_id):
                stats.skip(REASON_ALREADY_IMPORTED)
                return

            record = self.load(listed)
            verdict = self.check(record)
            if not verdict:
                logger.debug(f"Skipping {self.source}:{external_id}: {verdict.reason}")
                stats.skip(verdict.reason)
                return

            try:
                applied = self.apply(record, stats)
            except sqlite3.Error as e:
                raise RecordMappingError(
                    f"could not write {self.source}:{external_id}: {e}"
                ) from e
            self.ledger.record(
                self.source,
                external_id,
                applied.entity_type,
                applied.entity_id,
                applied.metadata,
            )
        except RecordValidationError as e:
            logger.debug(f"Skipping {self.source}:{external_id}: {e}")
            stats.skip(e.reason)
            return
        except RecordError as e:
            logger.warning(f"Failed to import {self.source}:{external_id}: {e}")
            stats.skip(e.reason)
            return
        except Exception as e:
            logger.warning(
                f"Failed to import {self.source}:{external_id}: {e}", exc_info=True
            )
            stats.skip(REASON_FAILED)
            return

        stats.processed += 1

    # =========================================================================
    # Identity resolution
    # =========================================================================

    def resolve_contact(
        self,
        email: str,
        stats: ImportStats,
        name: str = "",
        phone: str = "",
        notes: str = "",
        organization_name: str = "",
    ) -> Contact:
        """
        Find the contact for an email address, creating it if unknown.

        New contacts get the given organization, or one inferred from a
        non-consumer email domain, and are registered with the matcher so
        later records in the same run resolve to them.

        Args:
            email: Contact email
            stats: Run stats to update
            name: Display name (defaults to the address local part)
            phone: Phone for a new contact
            notes: Notes for a new contact
            organization_name: Explicit organization for a new contact

        Returns:
            Existing or newly created contact

        Raises:
            RecordValidationError: If the email is empty or malformed
        """
        normalized = normalize_email(email)
        if not normalized:
            raise RecordValidationError(
                "record has no contact email", reason=REASON_NO_CONTACT_EMAIL
            )
        if not is_valid_email(normalized):
            raise RecordValidationError(
                f"malformed contact email {normalized!r}",
                reason=REASON_NO_CONTACT_EMAIL,
            )

        existing = self.matcher.find_match(normalized)
        if existing is not None:
            return existing

        contact = Contact(
            name=name.strip() or normalized.split("@")[0],
            email=normalized,
            phone=phone,
            notes=notes,
            organization_id=self.resolve_organization(normalized, organization_name),
        )
        stored = self.store.create_contact(contact)
        if stored.id == contact.id:
            stats.contacts_created += 1
        self.matcher.add_contact(stored)
        return stored

    def resolve_organization(self, email: str, name: str = "") -> Optional[str]:
        """
        Find or create the organization for a new contact.

        Args:
            email: Normalized contact email
            name: Explicit organization name; inferred from the domain if empty

        Returns:
            Organization id, or None for consumer domains
        """
        name = name.strip()
        if name:
            return self.store.find_or_create_organization(name).id
        domain = extract_domain(email)
        if not domain or is_consumer_domain(domain):
            return None
        derived = derive_organization_name(domain)
        if not derived:
            return None
        return self.store.find_or_create_organization(derived, domain=domain).id
