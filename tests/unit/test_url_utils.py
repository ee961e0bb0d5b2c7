"""Unit tests for URL detection and scrape-target guards."""

import pytest

from chatcontext.core.url_utils import (
    ensure_protocol,
    extract_urls,
    is_domain_like,
    is_safe_public_url,
)


def test_extracts_explicit_urls_in_order() -> None:
    text = "Compare https://example.com/pricing with www.other.org/plans please"
    assert extract_urls(text) == ["https://example.com/pricing", "www.other.org/plans"]


def test_duplicates_are_collapsed() -> None:
    text = "https://example.com/a and again https://example.com/a"
    assert extract_urls(text) == ["https://example.com/a"]


def test_bare_domain_detected_when_no_explicit_url() -> None:
    assert extract_urls("what does example.com sell?") == ["example.com"]


def test_abbreviations_are_not_domains() -> None:
    assert extract_urls("Use a short name, e.g. something catchy, etc.") == []


def test_no_urls_in_plain_text() -> None:
    assert extract_urls("What is the refund policy?") == []
    assert extract_urls("") == []


def test_is_domain_like() -> None:
    assert is_domain_like("docs.example.co.uk") is True
    assert is_domain_like("e.g.") is False
    assert is_domain_like("hello") is False


def test_ensure_protocol() -> None:
    assert ensure_protocol("example.com") == "https://example.com"
    assert ensure_protocol("http://example.com") == "http://example.com"


@pytest.mark.parametrize(
    ("url", "reason"),
    [
        ("ftp://example.com/file", "invalid_scheme"),
        ("https://", "missing_hostname"),
        ("http://localhost:8000/admin", "blocked_hostname"),
        ("http://printer.local/", "blocked_hostname"),
        ("http://10.0.0.5/", "private_ip"),
        ("http://169.254.169.254/latest/meta-data", "private_ip"),
    ],
)
def test_unsafe_urls_are_refused(url, reason) -> None:
    assert is_safe_public_url(url) == (False, reason)


def test_public_url_is_allowed() -> None:
    assert is_safe_public_url("https://example.com/docs") == (True, "ok")


def test_allowlist_accepts_subdomains_only_of_listed_domains() -> None:
    allowed = {"example.com"}
    assert is_safe_public_url("https://docs.example.com/x", allowed) == (True, "ok")
    assert is_safe_public_url("https://example.org/x", allowed) == (False, "domain_not_allowed")
