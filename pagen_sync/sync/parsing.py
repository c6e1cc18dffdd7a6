"""
Header, address and date parsing helpers for external records.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, Callable, Optional

from pagen_sync.utils.normalization import extract_domain


def parse_headers(payload: Optional[dict[str, Any]]) -> dict[str, str]:
    """
    Flatten a Gmail message payload's header list into a dict.

    Args:
        payload: Message payload with a 'headers' list of {name, value}

    Returns:
        Mapping of header name to value (later duplicates win)
    """
    if not payload:
        return {}
    headers: dict[str, str] = {}
    for header in payload.get("headers") or []:
        name = header.get("name")
        if name:
            headers[name] = header.get("value", "")
    return headers


def extract_email_address(field: str) -> tuple[str, str, str]:
    """
    Split an address header value into display name, email and domain.

    Handles ``user@example.com``, ``Name <user@example.com>`` and
    ``"Quoted Name" <user@example.com>``. Malformed values (an opening
    bracket without a closing one) are returned as the email unchanged.

    Args:
        field: Address header value (first address only)

    Returns:
        Tuple of (name, email, lowercased domain); empty strings when absent
    """
    field = field.strip()
    if not field:
        return "", "", ""

    start = field.rfind("<")
    end = field.rfind(">")
    if start != -1 and end > start:
        name = field[:start].strip().strip('"').strip()
        email = field[start + 1 : end].strip()
        return name, email, extract_domain(email)

    return "", field, extract_domain(field)


def parse_addresses(field: str) -> list[tuple[str, str]]:
    """
    Parse an address list header such as To or Cc.

    Commas inside quoted display names ("Doe, John" <john@acme.com>) do
    not split entries. Entries without an "@" are dropped.

    Args:
        field: Address header value

    Returns:
        List of (name, email) tuples in header order
    """
    if not field or not field.strip():
        return []
    return [
        (name.strip(), email.strip())
        for name, email in getaddresses([field])
        if "@" in email
    ]


def count_recipients(to: str, cc: str = "") -> int:
    """Count the combined To and Cc recipients."""
    return len(parse_addresses(to)) + len(parse_addresses(cc))


def parse_email_date(
    value: str, now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
) -> datetime:
    """
    Parse an email Date header.

    Accepts RFC 2822 dates (with or without a trailing "(UTC)" style
    comment) and ISO 8601. A missing header yields the current time.

    Args:
        value: Date header value
        now: Clock used when the header is empty

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If the value cannot be parsed
    """
    value = value.strip()
    if not value:
        return now()

    paren = value.find(" (")
    if paren > 0:
        value = value[:paren]

    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Unrecognized email date: {value!r}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_event_time(value: Optional[dict[str, Any]]) -> Optional[datetime]:
    """
    Parse a Calendar API start/end object.

    Timed events carry 'dateTime' (RFC 3339); all-day events carry only
    'date'. All-day values are returned as midnight UTC.

    Args:
        value: Calendar API EventDateTime dict

    Returns:
        Timezone-aware datetime, or None when neither field is present

    Raises:
        ValueError: If a present value cannot be parsed
    """
    if not value:
        return None
    if value.get("dateTime"):
        parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    if value.get("date"):
        day = date.fromisoformat(value["date"])
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return None
