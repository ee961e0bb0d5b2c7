"""Deterministic cache-key hashing.

Two requests that differ only in option ordering, surrounding whitespace or
letter case of the free-text query hash to the same key. The canonical form is
a sorted-key JSON document; the digest is SHA-256 truncated to 16 hex chars.
"""

import hashlib
import json
import re
from collections.abc import Mapping
from typing import Any

KEY_LENGTH = 16

_WHITESPACE = re.compile(r"\s+")


def normalize_query(text: str) -> str:
    """Lower-case, trim, and collapse internal whitespace runs."""
    return _WHITESPACE.sub(" ", str(text or "")).strip().lower()


def stable_stringify(value: Any) -> str:
    """Serialize with keys sorted at every object level."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def hash_key(semantic: Mapping[str, Any]) -> str:
    """Hash an arbitrary semantic key object into a short hex key."""
    canonical = stable_stringify(semantic)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:KEY_LENGTH]


def query_key(
    query: str,
    options: Mapping[str, Any] | None = None,
    *,
    normalize: bool = True,
) -> str:
    """Cache key for a query plus its options.

    ``normalize=False`` keeps the text case-sensitive (only trimmed), which is
    what URL-keyed entries need since URL paths are case-sensitive.
    """
    text = normalize_query(query) if normalize else str(query or "").strip()
    return hash_key({"query": text, "options": dict(options or {})})
