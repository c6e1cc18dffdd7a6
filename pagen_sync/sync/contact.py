"""
Local entity models: contacts, organizations and interactions.

These are the records the importers create or enrich in the local store.
Identity for contacts is the normalized email address.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pagen_sync.utils.normalization import normalize_email


def new_id() -> str:
    """Generate a new entity id."""
    return str(uuid.uuid4())


class InteractionKind(str, Enum):
    """Kind of interaction appended to a contact's history."""

    EMAIL = "email"
    MEETING = "meeting"


@dataclass
class Organization:
    """
    A company or other organization a contact belongs to.

    Attributes:
        name: Display name, unique in the store
        domain: Email domain the organization was inferred from, if any
    """

    name: str
    domain: Optional[str] = None
    id: str = field(default_factory=new_id)


@dataclass
class Contact:
    """
    A person known to the local store.

    Attributes:
        name: Display name
        email: Email address; stored normalized and used as identity key
        phone: Phone number
        organization_id: Id of the contact's organization
        notes: Free-text notes
        last_contacted_at: Timestamp of the most recent interaction

    Usage:
        contact = Contact(name="Bob", email=" Bob@Acme.com ")
        contact.email  # 'bob@acme.com'

        # Fill empty fields from another source without overwriting
        changed = contact.enrich(phone="+1 555 0100", notes="Met at conf")
    """

    name: str
    email: str = ""
    phone: str = ""
    organization_id: Optional[str] = None
    notes: str = ""
    last_contacted_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        self.email = normalize_email(self.email)

    def enrich(
        self,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> bool:
        """
        Fill empty fields with data from another source.

        Never overwrites a non-empty field and never writes an empty value.

        Returns:
            True if any field changed
        """
        changed = False
        if phone and not self.phone:
            self.phone = phone
            changed = True
        if notes and not self.notes:
            self.notes = notes
            changed = True
        if organization_id and not self.organization_id:
            self.organization_id = organization_id
            changed = True
        return changed

    def to_payload(self) -> dict[str, Any]:
        """Serializable form used for outbound change payloads."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "organization_id": self.organization_id,
            "notes": self.notes,
        }

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>" if self.email else self.name


@dataclass
class Interaction:
    """
    One entry in a contact's interaction history.

    Attributes:
        contact_id: Contact the interaction belongs to
        kind: Interaction kind
        occurred_at: Time taken from the external record, not import time
        notes: Short note (email subject, meeting title)
        metadata: Structured details (message id, location, duration, ...)
        source: Source name the interaction was imported from
        external_id: Source-issued id of the external record
    """

    contact_id: str
    kind: InteractionKind
    occurred_at: datetime
    notes: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None
    external_id: Optional[str] = None
    id: str = field(default_factory=new_id)

    def to_payload(self) -> dict[str, Any]:
        """Serializable form used for outbound change payloads."""
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "kind": self.kind.value,
            "occurred_at": self.occurred_at.isoformat(),
            "notes": self.notes,
            "metadata": self.metadata,
        }
