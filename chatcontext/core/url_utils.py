"""URL detection in chat input and SSRF guards for scrape targets."""

import ipaddress
import re
from urllib.parse import urlparse

import structlog

logger = structlog.get_logger(__name__)

_URL_PATTERN = re.compile(
    r"(?:https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*))"
    r"|(?:www\.[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*))",
    re.IGNORECASE,
)
_DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][-a-zA-Z0-9]*(\.[a-zA-Z0-9][-a-zA-Z0-9]*)+$")
_TRAILING_PUNCTUATION = re.compile(r"[.,;:!?]$")

# Abbreviations that look like domains
_FALSE_POSITIVES = (
    "e.g.",
    "i.e.",
    "etc.",
    "vs.",
    "a.m.",
    "p.m.",
    "fig.",
    "ca.",
    "et al.",
    "n.b.",
    "p.s.",
)

_BLOCKED_HOSTNAMES = {
    "localhost",
    "0.0.0.0",
    "127.0.0.1",
    "::1",
}


def is_domain_like(text: str) -> bool:
    """True for bare domains such as ``example.com`` or ``docs.example.co.uk``."""
    if text.lower() in _FALSE_POSITIVES:
        return False
    return bool(_DOMAIN_PATTERN.match(text)) and len(text.rsplit(".", 1)[-1]) >= 2


def ensure_protocol(url: str) -> str:
    if url.startswith(("http://", "https://")):
        return url
    return f"https://{url}"


def extract_urls(text: str) -> list[str]:
    """Find URLs in free text, de-duplicated in order of first appearance.

    Explicit ``http(s)://`` and ``www.`` URLs win; bare domains are only
    considered when none of those are present.
    """
    found = _URL_PATTERN.findall(text or "")

    if not found:
        for word in (text or "").split():
            candidate = _TRAILING_PUNCTUATION.sub("", word)
            if len(candidate) < 5:
                continue
            lowered = candidate.lower()
            if any(fp in lowered for fp in _FALSE_POSITIVES):
                continue
            if is_domain_like(candidate):
                found.append(candidate)

    urls = list(dict.fromkeys(found))
    if urls:
        logger.info(
            "urls.detected",
            url_count=len(urls),
            urls=[ensure_protocol(url) for url in urls],
        )
    return urls


def _is_private_ip(hostname: str) -> bool:
    """Return True when hostname is an IP address in private/local ranges."""
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def is_safe_public_url(url: str, allowed_domains: set[str] | None = None) -> tuple[bool, str]:
    """Validate a scrape target against SSRF guardrails and an optional allowlist.

    Returns ``(ok, reason)``; reason is ``"ok"`` when the URL may be fetched.
    """
    parsed = urlparse(str(url or "").strip())
    if parsed.scheme.lower() not in {"http", "https"}:
        return False, "invalid_scheme"

    hostname = (parsed.hostname or "").strip().lower()
    if not hostname:
        return False, "missing_hostname"

    if hostname in _BLOCKED_HOSTNAMES or hostname.endswith((".local", ".internal")):
        return False, "blocked_hostname"

    if _is_private_ip(hostname):
        return False, "private_ip"

    if allowed_domains and not any(
        hostname == domain or hostname.endswith(f".{domain}") for domain in allowed_domains
    ):
        return False, "domain_not_allowed"

    return True, "ok"
