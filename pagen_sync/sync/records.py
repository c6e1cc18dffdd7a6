"""
External record models.

Typed views over the raw API resources the connectors return. Each model
has a ``from_api_response`` constructor that tolerates missing fields and
raises RecordMappingError for resources of the wrong shape; the filters
and importers decide what a missing field means.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from pagen_sync.sync.errors import RecordMappingError
from pagen_sync.sync.parsing import parse_headers


@dataclass
class MailMessage:
    """
    A Gmail message fetched with metadata headers.

    Attributes:
        id: Gmail message id (the ledger key)
        thread_id: Gmail thread id
        headers: Header name -> value (From, To, Cc, Subject, Date)
        mime_type: MIME type of the top-level payload
        label_ids: Gmail label ids
    """

    id: str
    thread_id: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    mime_type: str = ""
    label_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, message: dict[str, Any]) -> "MailMessage":
        """
        Create a MailMessage from a users.messages.get response.

        Args:
            message: Message resource fetched with format=metadata

        Returns:
            MailMessage instance

        Raises:
            RecordMappingError: If the resource has the wrong shape
        """
        try:
            payload = message.get("payload") or {}
            return cls(
                id=message.get("id", ""),
                thread_id=message.get("threadId", ""),
                headers=parse_headers(payload),
                mime_type=payload.get("mimeType", ""),
                label_ids=list(message.get("labelIds") or []),
            )
        except (AttributeError, TypeError) as e:
            raise RecordMappingError(f"malformed message resource: {e}") from e

    def header(self, name: str) -> str:
        """Get a header value, or an empty string."""
        return self.headers.get(name, "")

    @property
    def sender(self) -> str:
        return self.header("From")

    @property
    def to(self) -> str:
        return self.header("To")

    @property
    def cc(self) -> str:
        return self.header("Cc")

    @property
    def subject(self) -> str:
        return self.header("Subject")

    @property
    def date(self) -> str:
        return self.header("Date")


@dataclass
class Attendee:
    """A calendar event attendee."""

    email: str = ""
    display_name: str = ""
    response_status: str = ""
    is_self: bool = False
    organizer: bool = False

    @classmethod
    def from_api_response(cls, attendee: dict[str, Any]) -> "Attendee":
        return cls(
            email=attendee.get("email", ""),
            display_name=attendee.get("displayName", ""),
            response_status=attendee.get("responseStatus", ""),
            is_self=bool(attendee.get("self", False)),
            organizer=bool(attendee.get("organizer", False)),
        )


@dataclass
class CalendarEvent:
    """
    A Google Calendar event.

    ``start`` and ``end`` keep the API's EventDateTime dicts as-is: a timed
    event has 'dateTime', an all-day event has only 'date'.
    """

    id: str
    summary: str = ""
    status: str = ""
    location: str = ""
    start: Optional[dict[str, Any]] = None
    end: Optional[dict[str, Any]] = None
    attendees: list[Attendee] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, event: dict[str, Any]) -> "CalendarEvent":
        """
        Create a CalendarEvent from an events.list item.

        Args:
            event: Event resource

        Returns:
            CalendarEvent instance

        Raises:
            RecordMappingError: If the resource has the wrong shape
        """
        try:
            return cls(
                id=event.get("id", ""),
                summary=event.get("summary", ""),
                status=event.get("status", ""),
                location=event.get("location", ""),
                start=event.get("start"),
                end=event.get("end"),
                attendees=[
                    Attendee.from_api_response(a) for a in event.get("attendees") or []
                ],
            )
        except (AttributeError, TypeError) as e:
            raise RecordMappingError(f"malformed event resource: {e}") from e

    @property
    def is_all_day(self) -> bool:
        return bool(self.start and self.start.get("date"))


def _pick_primary(entries: list[dict[str, Any]]) -> str:
    """Return the primary entry's value, else the first non-empty value."""
    chosen = ""
    for entry in entries:
        value = entry.get("value", "")
        if not value:
            continue
        if not chosen:
            chosen = value
        if (entry.get("metadata") or {}).get("primary"):
            return str(value)
    return chosen


@dataclass
class DirectoryPerson:
    """
    A person from the Google People connections listing.

    Attributes:
        resource_name: People API resource name (the ledger key)
        name: Display name
        email: Primary email, else the first listed
        phone: Primary phone, else the first listed
        organization: First listed organization name
        job_title: First listed organization title
        notes: First biography
    """

    resource_name: str
    name: str = ""
    email: str = ""
    phone: str = ""
    organization: str = ""
    job_title: str = ""
    notes: str = ""

    @classmethod
    def from_api_response(cls, person: dict[str, Any]) -> "DirectoryPerson":
        """
        Create a DirectoryPerson from a People API person resource.

        Args:
            person: Person resource with names, emailAddresses, phoneNumbers,
                organizations and biographies

        Returns:
            DirectoryPerson instance

        Raises:
            RecordMappingError: If the resource has the wrong shape
        """
        try:
            names = person.get("names") or []
            organizations = person.get("organizations") or []
            biographies = person.get("biographies") or []

            name = names[0].get("displayName", "") if names else ""
            organization = organizations[0].get("name", "") if organizations else ""
            job_title = organizations[0].get("title", "") if organizations else ""
            notes = biographies[0].get("value", "") if biographies else ""

            return cls(
                resource_name=person.get("resourceName", ""),
                name=name,
                email=_pick_primary(person.get("emailAddresses") or []),
                phone=_pick_primary(person.get("phoneNumbers") or []),
                organization=organization,
                job_title=job_title,
                notes=notes,
            )
        except (AttributeError, TypeError) as e:
            raise RecordMappingError(f"malformed person resource: {e}") from e
