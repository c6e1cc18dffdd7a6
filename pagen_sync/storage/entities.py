"""
Local entity store for contacts, organizations and interactions.

All writes are safe to repeat with the same logical input:
- contacts are unique by normalized email; a lost insert race re-reads
- organizations are unique by name; a lost insert race re-reads
- interactions are unique by (source, external id, contact)
"""

import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Optional

from pagen_sync.storage.db import (
    SyncDatabase,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)
from pagen_sync.sync.contact import Contact, Interaction, InteractionKind, Organization
from pagen_sync.utils.normalization import normalize_email

if TYPE_CHECKING:
    from pagen_sync.sync.outbound import OutboundQueue

logger = logging.getLogger(__name__)


def _row_to_contact(row: sqlite3.Row) -> Contact:
    return Contact(
        id=row["id"],
        name=row["name"],
        email=row["email"] or "",
        phone=row["phone"] or "",
        organization_id=row["organization_id"],
        notes=row["notes"] or "",
        last_contacted_at=from_db_timestamp(row["last_contacted_at"]),
    )


def _row_to_interaction(row: sqlite3.Row) -> Interaction:
    occurred_at = from_db_timestamp(row["occurred_at"])
    if occurred_at is None:
        raise ValueError(f"interaction {row['id']} has no timestamp")
    return Interaction(
        id=row["id"],
        contact_id=row["contact_id"],
        kind=InteractionKind(row["kind"]),
        occurred_at=occurred_at,
        notes=row["notes"] or "",
        metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        source=row["source"],
        external_id=row["external_id"],
    )


_CONTACT_COLUMNS = (
    "id, name, email, phone, organization_id, notes, last_contacted_at"
)


class EntityStore:
    """
    SQLite-backed writer for the entities the importers produce.

    Usage:
        store = EntityStore(database)
        org = store.find_or_create_organization("Acme", domain="acme.com")
        contact = store.create_contact(Contact(name="Bob", email="bob@acme.com",
                                               organization_id=org.id))
        store.append_interaction(Interaction(contact_id=contact.id, ...))
    """

    def __init__(
        self, database: SyncDatabase, outbound: Optional["OutboundQueue"] = None
    ):
        """
        Initialize the entity store.

        Args:
            database: Initialized SyncDatabase
            outbound: Optional queue that receives a change for every write
        """
        self.database = database
        self.outbound = outbound

    def _queue(self, entity: str, entity_id: str, op: str, payload: dict) -> None:
        if self.outbound is not None:
            self.outbound.queue_change(entity, entity_id, op, payload)

    # =========================================================================
    # Contacts
    # =========================================================================

    def list_contacts(self) -> list[Contact]:
        """Return a snapshot of every contact."""
        with self.database.connection() as conn:
            rows = conn.execute(
                f"SELECT {_CONTACT_COLUMNS} FROM contacts ORDER BY name"  # nosec B608
            ).fetchall()
            return [_row_to_contact(row) for row in rows]

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        """Get a contact by id."""
        with self.database.connection() as conn:
            row = conn.execute(
                f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE id = ?",  # nosec B608
                (contact_id,),
            ).fetchone()
            return _row_to_contact(row) if row else None

    def find_contact_by_email(self, email: str) -> Optional[Contact]:
        """Get a contact by normalized email."""
        normalized = normalize_email(email)
        if not normalized:
            return None
        with self.database.connection() as conn:
            row = conn.execute(
                f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE email = ?",  # nosec B608
                (normalized,),
            ).fetchone()
            return _row_to_contact(row) if row else None

    def create_contact(self, contact: Contact) -> Contact:
        """
        Insert a contact, or return the existing one with the same email.

        Args:
            contact: Contact to insert

        Returns:
            The stored contact (the existing row if the email was taken)
        """
        now = to_db_timestamp(utcnow())
        try:
            with self.database.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO contacts
                        (id, name, email, phone, organization_id, notes,
                         last_contacted_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        contact.id,
                        contact.name,
                        contact.email or None,
                        contact.phone or None,
                        contact.organization_id,
                        contact.notes or None,
                        to_db_timestamp(contact.last_contacted_at),
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError:
            existing = self.find_contact_by_email(contact.email)
            if existing is None:
                raise
            logger.debug(f"Contact {contact.email} already exists, reusing")
            return existing

        logger.debug(f"Created contact: {contact}")
        self._queue("contact", contact.id, "create", contact.to_payload())
        return contact

    def update_contact(self, contact: Contact) -> None:
        """Persist the mutable fields of an existing contact."""
        with self.database.connection() as conn:
            conn.execute(
                """
                UPDATE contacts
                SET name = ?, phone = ?, organization_id = ?, notes = ?,
                    last_contacted_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    contact.name,
                    contact.phone or None,
                    contact.organization_id,
                    contact.notes or None,
                    to_db_timestamp(contact.last_contacted_at),
                    to_db_timestamp(utcnow()),
                    contact.id,
                ),
            )
        self._queue("contact", contact.id, "update", contact.to_payload())

    def count_contacts(self) -> int:
        with self.database.connection() as conn:
            result: int = conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0]
            return result

    # =========================================================================
    # Organizations
    # =========================================================================

    def find_organization_by_name(self, name: str) -> Optional[Organization]:
        """Get an organization by exact name."""
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT id, name, domain FROM organizations WHERE name = ?", (name,)
            ).fetchone()
            if not row:
                return None
            return Organization(id=row["id"], name=row["name"], domain=row["domain"])

    def create_organization(self, organization: Organization) -> Organization:
        """
        Insert an organization.

        Raises:
            sqlite3.IntegrityError: If the name is already taken
        """
        now = to_db_timestamp(utcnow())
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO organizations (id, name, domain, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (organization.id, organization.name, organization.domain, now, now),
            )
        logger.debug(f"Created organization: {organization.name}")
        self._queue(
            "organization",
            organization.id,
            "create",
            {"id": organization.id, "name": organization.name, "domain": organization.domain},
        )
        return organization

    def find_or_create_organization(
        self, name: str, domain: Optional[str] = None
    ) -> Organization:
        """
        Find an organization by name, creating it if missing.

        A failed insert (another writer created the same name first) is
        resolved by reading the row again.

        Args:
            name: Organization name
            domain: Domain to store when creating

        Returns:
            The existing or newly created organization
        """
        existing = self.find_organization_by_name(name)
        if existing is not None:
            return existing

        try:
            return self.create_organization(Organization(name=name, domain=domain))
        except sqlite3.IntegrityError:
            existing = self.find_organization_by_name(name)
            if existing is None:
                raise
            return existing

    def count_organizations(self) -> int:
        with self.database.connection() as conn:
            result: int = conn.execute(
                "SELECT COUNT(*) FROM organizations"
            ).fetchone()[0]
            return result

    # =========================================================================
    # Interactions
    # =========================================================================

    def append_interaction(self, interaction: Interaction) -> Interaction:
        """
        Append an interaction and bump the contact's last-contacted time.

        Appending the same (source, external id, contact) twice returns
        the interaction stored the first time.

        Args:
            interaction: Interaction to append

        Returns:
            The stored interaction
        """
        with self.database.connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO interactions
                    (id, contact_id, kind, occurred_at, notes, metadata,
                     source, external_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    interaction.id,
                    interaction.contact_id,
                    interaction.kind.value,
                    to_db_timestamp(interaction.occurred_at),
                    interaction.notes or None,
                    json.dumps(interaction.metadata) if interaction.metadata else None,
                    interaction.source,
                    interaction.external_id,
                    to_db_timestamp(utcnow()),
                ),
            )
            inserted = cursor.rowcount > 0

            if not inserted:
                row = conn.execute(
                    """
                    SELECT id, contact_id, kind, occurred_at, notes, metadata,
                           source, external_id
                    FROM interactions
                    WHERE source = ? AND external_id = ? AND contact_id = ?
                    """,
                    (
                        interaction.source,
                        interaction.external_id,
                        interaction.contact_id,
                    ),
                ).fetchone()
                if row is not None:
                    logger.debug(
                        f"Interaction for {interaction.source}:{interaction.external_id} "
                        "already stored"
                    )
                    return _row_to_interaction(row)

            occurred = to_db_timestamp(interaction.occurred_at)
            conn.execute(
                """
                UPDATE contacts
                SET last_contacted_at = ?, updated_at = ?
                WHERE id = ?
                  AND (last_contacted_at IS NULL OR last_contacted_at < ?)
                """,
                (occurred, to_db_timestamp(utcnow()), interaction.contact_id, occurred),
            )

        self._queue("interaction", interaction.id, "create", interaction.to_payload())
        return interaction

    def list_interactions(self, contact_id: Optional[str] = None) -> list[Interaction]:
        """List interactions, newest first, optionally for one contact."""
        query = (
            "SELECT id, contact_id, kind, occurred_at, notes, metadata, "
            "source, external_id FROM interactions"
        )
        params: tuple = ()
        if contact_id is not None:
            query += " WHERE contact_id = ?"
            params = (contact_id,)
        query += " ORDER BY occurred_at DESC"
        with self.database.connection() as conn:
            return [_row_to_interaction(row) for row in conn.execute(query, params)]

    def count_interactions(self) -> int:
        with self.database.connection() as conn:
            result: int = conn.execute(
                "SELECT COUNT(*) FROM interactions"
            ).fetchone()[0]
            return result
