"""
Signal filters for external records.

Each filter decides whether a record is worth importing ("high-signal")
and, if not, returns the specific reason it was rejected. Reasons double
as the skip-tally keys in import run results.
"""

from dataclasses import dataclass
from typing import Optional

from pagen_sync.sync.parsing import count_recipients
from pagen_sync.sync.records import CalendarEvent, MailMessage

# Skip reasons shared by every source
REASON_ALREADY_IMPORTED = "already imported"
REASON_NO_CONTACT_EMAIL = "no contact email"
REASON_FAILED = "failed"

# Mailbox skip reasons
REASON_MISSING_MESSAGE = "missing message"
REASON_AUTOMATED_SENDER = "automated sender"
REASON_CALENDAR_INVITE = "calendar invite"
REASON_AUTO_SUBJECT = "auto-generated subject"

# Calendar skip reasons
REASON_MISSING_EVENT = "missing event"
REASON_MISSING_START = "missing start time"
REASON_ALL_DAY = "all-day event"
REASON_CANCELLED = "cancelled"
REASON_DECLINED = "declined"

# Directory skip reasons
REASON_MISSING_NAME = "missing name"

DEFAULT_MAX_RECIPIENTS = 4

# Substrings of the From header that mark machine-sent mail
AUTOMATED_SENDER_PATTERNS = (
    "noreply",
    "no-reply",
    "donotreply",
    "do-not-reply",
    "notifications",
    "notify",
    "mailer-daemon",
    "postmaster",
    "bounces",
    "unsubscribe",
    "newsletter",
    "marketing",
)

CALENDAR_SUBJECT_PREFIXES = (
    "invitation:",
    "invite:",
    "calendar:",
    "updated invitation:",
    "canceled event:",
)

AUTO_SUBJECT_PREFIXES = (
    "automatic reply",
    "out of office",
    "delivery status notification",
    "returned mail",
    "failure notice",
    "undelivered mail",
)

CALENDAR_MIME_TYPE = "text/calendar"


def group_email_reason(recipients: int) -> str:
    return f"group email ({recipients} recipients)"


def solo_event_reason(attendees: int) -> str:
    suffix = "" if attendees == 1 else "s"
    return f"solo event ({attendees} attendee{suffix})"


@dataclass(frozen=True)
class FilterResult:
    """Outcome of a signal filter: accepted, or rejected with a reason."""

    accepted: bool
    reason: str = ""

    @classmethod
    def accept(cls) -> "FilterResult":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: str) -> "FilterResult":
        return cls(accepted=False, reason=reason)

    def __bool__(self) -> bool:
        return self.accepted


def is_automated_sender(sender: str) -> bool:
    """
    Check whether a From header looks machine-generated.

    An empty sender counts as automated. Matching is a case-insensitive
    substring test over the whole header, so domains such as
    ``notifications-service.com`` also match.
    """
    if not sender.strip():
        return True
    lowered = sender.lower()
    return any(pattern in lowered for pattern in AUTOMATED_SENDER_PATTERNS)


def is_calendar_invite(mime_type: str, subject: str) -> bool:
    """Check whether a message is a scheduling artifact."""
    if CALENDAR_MIME_TYPE in mime_type.lower():
        return True
    lowered = subject.strip().lower()
    return lowered.startswith(CALENDAR_SUBJECT_PREFIXES)


def is_auto_generated_subject(subject: str) -> bool:
    """Check for empty, very short, auto-reply or bounce subjects."""
    stripped = subject.strip()
    if len(stripped) < 3:
        return True
    return stripped.lower().startswith(AUTO_SUBJECT_PREFIXES)


class MailboxFilter:
    """
    Noise filter for mailbox messages.

    Rejects, in order: automated senders, group emails, calendar invites
    and auto-generated subjects.

    Usage:
        result = MailboxFilter().check(message)
        if not result:
            skipped[result.reason] += 1
    """

    def __init__(self, max_recipients: int = DEFAULT_MAX_RECIPIENTS):
        self.max_recipients = max_recipients

    def check(self, message: Optional[MailMessage]) -> FilterResult:
        if message is None:
            return FilterResult.reject(REASON_MISSING_MESSAGE)

        if is_automated_sender(message.sender):
            return FilterResult.reject(REASON_AUTOMATED_SENDER)

        recipients = count_recipients(message.to, message.cc)
        if recipients > self.max_recipients:
            return FilterResult.reject(group_email_reason(recipients))

        if is_calendar_invite(message.mime_type, message.subject):
            return FilterResult.reject(REASON_CALENDAR_INVITE)

        if is_auto_generated_subject(message.subject):
            return FilterResult.reject(REASON_AUTO_SUBJECT)

        return FilterResult.accept()


class CalendarFilter:
    """
    Noise filter for calendar events.

    Rejects missing events, events without a start, all-day events,
    cancelled events, events the user declined and solo events.
    """

    def check(self, event: Optional[CalendarEvent]) -> FilterResult:
        if event is None:
            return FilterResult.reject(REASON_MISSING_EVENT)

        if not event.start:
            return FilterResult.reject(REASON_MISSING_START)

        if event.is_all_day:
            return FilterResult.reject(REASON_ALL_DAY)

        if not event.start.get("dateTime"):
            return FilterResult.reject(REASON_MISSING_START)

        if event.status == "cancelled":
            return FilterResult.reject(REASON_CANCELLED)

        for attendee in event.attendees:
            if attendee.is_self and attendee.response_status == "declined":
                return FilterResult.reject(REASON_DECLINED)

        if len(event.attendees) <= 1:
            return FilterResult.reject(solo_event_reason(len(event.attendees)))

        return FilterResult.accept()
