"""
Calendar importer.

Turns meetings with other people into meeting interactions, one per
attendee other than the user.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from pagen_sync.connectors.base import SourceConnector
from pagen_sync.storage.db import SyncDatabase
from pagen_sync.sync.contact import Interaction, InteractionKind
from pagen_sync.sync.engine import AppliedRecord, ImportStats, IncrementalImporter
from pagen_sync.sync.errors import RecordValidationError
from pagen_sync.sync.filters import REASON_NO_CONTACT_EMAIL, CalendarFilter, FilterResult
from pagen_sync.sync.parsing import parse_event_time
from pagen_sync.sync.records import Attendee, CalendarEvent
from pagen_sync.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

CALENDAR_SOURCE = "calendar"
REASON_INVALID_START = "invalid start time"


def event_duration_minutes(event: CalendarEvent) -> int:
    """
    Duration of a timed event in whole minutes.

    Returns 0 when the end is missing, unparseable or before the start.
    """
    try:
        start = parse_event_time(event.start)
        end = parse_event_time(event.end)
    except ValueError as e:
        logger.warning(f"Could not compute duration for event {event.summary!r}: {e}")
        return 0
    if start is None or end is None or end < start:
        return 0
    return int((end - start).total_seconds() // 60)


class CalendarImporter(IncrementalImporter):
    """Importer for calendar events."""

    source = CALENDAR_SOURCE
    bootstrap_lookback = timedelta(days=180)

    def __init__(
        self,
        connector: SourceConnector,
        database: SyncDatabase,
        user_email: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(connector, database, **kwargs)
        self.user_email = normalize_email(
            user_email
            if user_email is not None
            else getattr(connector, "user_email", "")
        )
        self.filter = CalendarFilter()

    def external_id(self, record: Any) -> str:
        return str(record.id)

    def load(self, record: Any) -> CalendarEvent:
        if isinstance(record, dict):
            return CalendarEvent.from_api_response(record)
        return record

    def check(self, record: CalendarEvent) -> FilterResult:
        return self.filter.check(record)

    def other_attendees(self, event: CalendarEvent) -> list[Attendee]:
        """Attendees with an email address, excluding the user."""
        others = []
        for attendee in event.attendees:
            email = normalize_email(attendee.email)
            if not email or attendee.is_self:
                continue
            if self.user_email and email == self.user_email:
                continue
            others.append(attendee)
        return others

    def apply(self, record: CalendarEvent, stats: ImportStats) -> AppliedRecord:
        attendees = self.other_attendees(record)
        if not attendees:
            raise RecordValidationError(
                f"event {record.id} has no other attendees with an email",
                reason=REASON_NO_CONTACT_EMAIL,
            )

        try:
            started_at = parse_event_time(record.start)
        except ValueError as e:
            raise RecordValidationError(str(e), reason=REASON_INVALID_START) from e
        if started_at is None:
            raise RecordValidationError(
                f"event {record.id} has no start time", reason=REASON_INVALID_START
            )

        metadata = {
            "calendar_event_id": record.id,
            "location": record.location,
            "duration_minutes": event_duration_minutes(record),
            "attendee_count": len(record.attendees),
        }

        # Resolve everyone first so a bad attendee writes no interactions
        contacts = [
            self.resolve_contact(a.email, stats, name=a.display_name)
            for a in attendees
        ]

        interaction_ids = []
        for contact in contacts:
            interaction = self.store.append_interaction(
                Interaction(
                    contact_id=contact.id,
                    kind=InteractionKind.MEETING,
                    occurred_at=started_at,
                    notes=record.summary,
                    metadata=metadata,
                    source=self.source,
                    external_id=record.id,
                )
            )
            interaction_ids.append(interaction.id)
            stats.interactions_logged += 1

        logger.debug(
            f"Logged meeting {record.summary!r} with {len(contacts)} contact(s)"
        )
        return AppliedRecord(
            entity_type="interaction",
            entity_id=interaction_ids[0],
            metadata={"summary": record.summary, "interaction_ids": interaction_ids},
        )
