"""
Identity matching for imported people.

Resolves an incoming email address to a known local contact. Matching is
exact on the normalized email only; display names are never compared.

Also holds the organization inference used when a new contact is created
from a company email domain.
"""

import logging
from typing import Iterable, Optional

from pagen_sync.sync.contact import Contact
from pagen_sync.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

# Public mail providers; addresses here say nothing about an employer
CONSUMER_DOMAINS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "msn.com",
        "icloud.com",
        "me.com",
        "mac.com",
        "aol.com",
        "protonmail.com",
        "pm.me",
    }
)

# Suffixes removed, in order, before turning a domain into a name
ORGANIZATION_SUFFIXES = (".com", ".org", ".net", ".io")


def is_consumer_domain(domain: str) -> bool:
    """Check whether a domain belongs to a public mail provider."""
    return domain.strip().lower() in CONSUMER_DOMAINS


def derive_organization_name(domain: str) -> str:
    """
    Derive an organization name from an email domain.

    Common suffixes are stripped, the rest is split on dots and dashes,
    and each segment is capitalized.

    Examples:
        acme.com          -> "Acme"
        big-corp.io       -> "Big Corp"
        mail.example.org  -> "Mail Example"

    Args:
        domain: Lowercased email domain

    Returns:
        Organization name, or empty string if nothing remains
    """
    name = domain.strip()
    for suffix in ORGANIZATION_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]

    parts = [p for p in name.replace("-", ".").split(".") if p]
    return " ".join(p[:1].upper() + p[1:] for p in parts)


class IdentityMatcher:
    """
    Run-scoped index of known contacts keyed by normalized email.

    Build one per import run from a snapshot of the store, and register
    every contact the run creates so later records in the same run resolve
    to it.

    Usage:
        matcher = IdentityMatcher(store.list_contacts())
        contact = matcher.find_match("Alice@Example.com")
        if contact is None:
            contact = store.create_contact(Contact(name="Alice", email=...))
            matcher.add_contact(contact)
    """

    def __init__(self, contacts: Iterable[Contact] = ()):
        """
        Initialize the matcher.

        Args:
            contacts: Snapshot of existing contacts
        """
        self._by_email: dict[str, Contact] = {}
        for contact in contacts:
            self.add_contact(contact)
        logger.debug(f"Identity matcher indexed {len(self._by_email)} emails")

    def find_match(self, email: str) -> Optional[Contact]:
        """
        Find the contact for an email address.

        Args:
            email: Raw email address

        Returns:
            Matching contact, or None (always None for an empty address)
        """
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self._by_email.get(normalized)

    def add_contact(self, contact: Contact) -> None:
        """Register a contact; contacts without an email are ignored."""
        normalized = normalize_email(contact.email)
        if normalized:
            self._by_email[normalized] = contact

    def __len__(self) -> int:
        return len(self._by_email)

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and self.find_match(email) is not None
