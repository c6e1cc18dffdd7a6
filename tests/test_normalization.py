"""Tests for email normalization utilities."""

import pytest

from pagen_sync.utils.normalization import extract_domain, is_valid_email, normalize_email


class TestNormalizeEmail:
    """Test normalize_email."""

    def test_empty_string_returns_empty(self):
        """Empty string should return empty string."""
        assert normalize_email("") == ""

    def test_none_returns_empty(self):
        """None should return empty string."""
        assert normalize_email(None) == ""

    def test_lowercase_conversion(self):
        """Addresses are case-folded."""
        assert normalize_email("Alice@Example.COM") == "alice@example.com"

    def test_whitespace_trimmed(self):
        """Surrounding whitespace is removed."""
        assert normalize_email("  bob@acme.com\t") == "bob@acme.com"

    def test_case_variants_are_equal(self):
        """Case variants of one address normalize to the same key."""
        assert normalize_email(" Bob@Acme.com ") == normalize_email("bob@ACME.com")


class TestExtractDomain:
    """Test extract_domain."""

    @pytest.mark.parametrize(
        "email,expected",
        [
            ("bob@acme.com", "acme.com"),
            ("Bob@ACME.Com", "acme.com"),
            (" carol@mail.example.org ", "mail.example.org"),
        ],
    )
    def test_domain_extracted(self, email, expected):
        """The part after the @ is returned lowercased."""
        assert extract_domain(email) == expected

    @pytest.mark.parametrize("email", ["", None, "no-at-sign", "a@b@c.com", "user@"])
    def test_invalid_addresses_have_no_domain(self, email):
        """Addresses without exactly one @ yield an empty domain."""
        assert extract_domain(email) == ""


class TestIsValidEmail:
    """Test is_valid_email."""

    @pytest.mark.parametrize("email", ["bob@acme.com", "a.b+tag@mail.example.org"])
    def test_valid(self, email):
        """Ordinary addresses are usable identity keys."""
        assert is_valid_email(email)

    @pytest.mark.parametrize(
        "email", [None, "", "bob", '"doe', "bob@", "@acme.com", "a@b@c.com", '"doe@acme.com']
    )
    def test_invalid(self, email):
        """Addresses without one "@" between a local part and a domain are rejected."""
        assert not is_valid_email(email)
