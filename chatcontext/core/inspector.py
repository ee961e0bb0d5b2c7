"""Read-only diagnostics for a single cache entry."""

import json
from typing import Any

import structlog

from chatcontext.core.cache import CacheStore
from chatcontext.models.schemas import CacheInspection, EncodingFlags

logger = structlog.get_logger(__name__)

PREVIEW_LENGTH = 100


def _preview(text: str) -> str:
    return text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def analyze_raw_value(key: str, raw: Any, backend: str) -> CacheInspection:
    """Describe a stored value and flag encodings that usually indicate a bug."""
    if raw is None:
        return CacheInspection(key=key, found=False, backend=backend)

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = raw if isinstance(raw, str) else json.dumps(raw, default=str)

    flags = EncodingFlags(
        starts_with_quote=text.startswith('"'),
        ends_with_quote=text.endswith('"'),
        contains_escaped_quotes='\\"' in text,
        contains_object_notation="[object Object]" in text,
    )
    parsed_type = None
    parse_error = None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        parse_error = str(exc)
    else:
        flags.parses_as_json = True
        parsed_type = _type_name(parsed)
        # A JSON string whose contents are themselves a JSON container
        if isinstance(parsed, str) and parsed.lstrip().startswith(("{", "[")):
            try:
                json.loads(parsed)
                flags.looks_double_encoded = True
            except json.JSONDecodeError:
                pass

    return CacheInspection(
        key=key,
        found=True,
        backend=backend,
        raw_type=_type_name(raw),
        length=len(text),
        preview=_preview(text),
        flags=flags,
        parsed_type=parsed_type,
        parse_error=parse_error,
    )


async def inspect_cache_key(cache: CacheStore, full_key: str) -> CacheInspection:
    """Inspect the entry stored under a fully qualified key, e.g. ``global:rag:<hash>``."""
    raw = await cache.get_raw(full_key)
    inspection = analyze_raw_value(full_key, raw, cache.backend_name)
    logger.info(
        "cache.inspected",
        key_preview=full_key[:60],
        found=inspection.found,
        double_encoded=inspection.flags.looks_double_encoded,
    )
    return inspection
