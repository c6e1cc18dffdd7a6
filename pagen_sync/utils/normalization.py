"""
Email normalization utilities for identity matching.

Provides the single identity key used to deduplicate people across
sources: a trimmed, case-folded email address.
"""

from __future__ import annotations


def normalize_email(email: str | None) -> str:
    """
    Normalize an email address for matching.

    Args:
        email: Raw email address (may be None or padded with whitespace)

    Returns:
        Lowercased, whitespace-trimmed address, or empty string
    """
    if not email:
        return ""
    return email.strip().lower()


def extract_domain(email: str | None) -> str:
    """
    Extract the lowercased domain part of an email address.

    Args:
        email: Email address

    Returns:
        Domain (e.g. "acme.com"), or empty string if the address does not
        contain exactly one "@"
    """
    if not email:
        return ""
    parts = email.strip().split("@")
    if len(parts) != 2 or not parts[1]:
        return ""
    return parts[1].lower()


def is_valid_email(email: str | None) -> bool:
    """
    Check that an address has one "@" with a non-empty local part and domain.

    Args:
        email: Email address

    Returns:
        True if the address can serve as an identity key
    """
    if not extract_domain(email):
        return False
    local = email.strip().split("@")[0]
    return bool(local) and not any(c in local for c in ' "<>,')
