"""
Mailbox (Gmail) importer.

Turns high-signal messages into email interactions with the person on the
other side of the conversation.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from pagen_sync.connectors.base import SourceConnector
from pagen_sync.storage.db import SyncDatabase
from pagen_sync.sync.contact import Interaction, InteractionKind
from pagen_sync.sync.engine import AppliedRecord, ImportStats, IncrementalImporter
from pagen_sync.sync.errors import RecordValidationError
from pagen_sync.sync.filters import (
    DEFAULT_MAX_RECIPIENTS,
    REASON_NO_CONTACT_EMAIL,
    FilterResult,
    MailboxFilter,
)
from pagen_sync.sync.parsing import (
    extract_email_address,
    parse_addresses,
    parse_email_date,
)
from pagen_sync.sync.records import MailMessage
from pagen_sync.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

MAILBOX_SOURCE = "gmail"
REASON_INVALID_DATE = "invalid date"


class MailboxImporter(IncrementalImporter):
    """
    Importer for mailbox messages.

    Listings carry message references only; the full message (metadata
    headers) is fetched after the ledger check so already imported
    messages cost no extra request.
    """

    source = MAILBOX_SOURCE
    bootstrap_lookback = timedelta(days=30)

    def __init__(
        self,
        connector: SourceConnector,
        database: SyncDatabase,
        user_email: Optional[str] = None,
        max_recipients: int = DEFAULT_MAX_RECIPIENTS,
        **kwargs: Any,
    ):
        super().__init__(connector, database, **kwargs)
        self.user_email = normalize_email(
            user_email
            if user_email is not None
            else getattr(connector, "user_email", "")
        )
        self.filter = MailboxFilter(max_recipients=max_recipients)

    def external_id(self, record: Any) -> str:
        if isinstance(record, MailMessage):
            return record.id
        if isinstance(record, dict):
            return str(record["id"])
        return str(record)

    def load(self, record: Any) -> MailMessage:
        if isinstance(record, MailMessage):
            return record
        detail = self.connector.fetch_detail(self.external_id(record))
        if isinstance(detail, dict):
            return MailMessage.from_api_response(detail)
        return detail

    def check(self, record: MailMessage) -> FilterResult:
        return self.filter.check(record)

    def counterpart(self, message: MailMessage) -> tuple[str, str]:
        """
        Pick the person on the other side of a message.

        Mail the user sent maps to its first To recipient; anything else
        maps to its sender.

        Returns:
            Tuple of (name, email); email is empty for self-addressed mail
        """
        _, sender_email, _ = extract_email_address(message.sender)

        if self.user_email and normalize_email(sender_email) == self.user_email:
            recipients = parse_addresses(message.to)
            if not recipients:
                return "", ""
            name, email = recipients[0]
        else:
            name, email, _ = extract_email_address(message.sender)

        if normalize_email(email) == self.user_email:
            return "", ""
        return name, email

    def apply(self, record: MailMessage, stats: ImportStats) -> AppliedRecord:
        name, email = self.counterpart(record)
        if not email:
            raise RecordValidationError(
                f"message {record.id} has no contact email",
                reason=REASON_NO_CONTACT_EMAIL,
            )

        try:
            occurred_at = parse_email_date(record.date, now=self.clock)
        except ValueError as e:
            raise RecordValidationError(str(e), reason=REASON_INVALID_DATE) from e

        contact = self.resolve_contact(email, stats, name=name)
        interaction = self.store.append_interaction(
            Interaction(
                contact_id=contact.id,
                kind=InteractionKind.EMAIL,
                occurred_at=occurred_at,
                notes=record.subject,
                metadata={"message_id": record.id, "thread_id": record.thread_id},
                source=self.source,
                external_id=record.id,
            )
        )
        stats.interactions_logged += 1
        logger.debug(f"Logged email with {contact.email}: {record.subject!r}")

        return AppliedRecord(
            entity_type="interaction",
            entity_id=interaction.id,
            metadata={"subject": record.subject},
        )
