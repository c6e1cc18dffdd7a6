"""
Contacts directory (Google People) importer.

Creates contacts for people not yet known locally and fills empty fields
of existing contacts. Existing non-empty fields are never overwritten.
"""

import logging
from datetime import timedelta
from typing import Any

from pagen_sync.sync.engine import AppliedRecord, ImportStats, IncrementalImporter
from pagen_sync.sync.filters import (
    REASON_MISSING_NAME,
    REASON_NO_CONTACT_EMAIL,
    FilterResult,
)
from pagen_sync.sync.records import DirectoryPerson
from pagen_sync.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

DIRECTORY_SOURCE = "contacts"


class DirectoryImporter(IncrementalImporter):
    """Importer for directory people."""

    source = DIRECTORY_SOURCE
    bootstrap_lookback = timedelta(days=3650)

    def external_id(self, record: Any) -> str:
        return str(record.resource_name)

    def load(self, record: Any) -> DirectoryPerson:
        if isinstance(record, dict):
            return DirectoryPerson.from_api_response(record)
        return record

    def check(self, record: DirectoryPerson) -> FilterResult:
        if not record.name.strip():
            return FilterResult.reject(REASON_MISSING_NAME)
        if not normalize_email(record.email):
            return FilterResult.reject(REASON_NO_CONTACT_EMAIL)
        return FilterResult.accept()

    def apply(self, record: DirectoryPerson, stats: ImportStats) -> AppliedRecord:
        existing = self.matcher.find_match(record.email)
        if existing is None:
            contact = self.resolve_contact(
                record.email,
                stats,
                name=record.name,
                phone=record.phone,
                notes=record.notes,
                organization_name=record.organization,
            )
            return AppliedRecord(entity_type="contact", entity_id=contact.id)

        # The matcher snapshot may be stale; enrich the stored row
        contact = self.store.get_contact(existing.id) or existing

        organization_id = None
        if record.organization.strip() and not contact.organization_id:
            organization_id = self.store.find_or_create_organization(
                record.organization.strip()
            ).id

        if contact.enrich(
            phone=record.phone, notes=record.notes, organization_id=organization_id
        ):
            self.store.update_contact(contact)
            self.matcher.add_contact(contact)
            stats.contacts_updated += 1
            logger.debug(f"Enriched contact {contact}")

        return AppliedRecord(entity_type="contact", entity_id=contact.id)
