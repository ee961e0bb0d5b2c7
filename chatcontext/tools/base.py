"""Cache-aware, deadline-bound source fetchers.

A fetcher never raises for expected failures. Every call returns a
SourceResult whose ``outcome`` says what happened:

- ``cache_hit``: a valid cached envelope was rendered
- ``live``: the capability answered in time; the envelope was cached
- ``empty``: the capability answered with nothing usable
- ``timeout``: the per-source deadline fired first
- ``error``: the capability failed (HTTP error, malformed payload, ...)
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar, Generic, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatcontext.core.cache import CacheStore
from chatcontext.core.constants import CacheNamespace, Sentinels
from chatcontext.core.deadline import race_with_outcome
from chatcontext.core.exceptions import ConfigurationError
from chatcontext.core.hashing import query_key
from chatcontext.core.metrics import source_call_duration_seconds, source_calls_total

logger = structlog.get_logger(__name__)

SCRAPE_SEPARATOR = "\n\n---\n\n"


class SourceOutcome(StrEnum):
    CACHE_HIT = "cache_hit"
    LIVE = "live"
    EMPTY = "empty"
    TIMEOUT = "timeout"
    ERROR = "error"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class SourceResult:
    source_name: str
    content: str
    outcome: SourceOutcome
    retrieved_at: datetime = field(default_factory=_now)
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def from_cache(self) -> bool:
        return self.outcome is SourceOutcome.CACHE_HIT

    @property
    def usable(self) -> bool:
        """Only hits and live answers with real content feed the turn."""
        return (
            self.outcome in (SourceOutcome.CACHE_HIT, SourceOutcome.LIVE)
            and bool(self.content.strip())
        )

    @classmethod
    def timed_out(cls, source_name: str, budget_seconds: float, **meta: Any) -> SourceResult:
        return cls(
            source_name=source_name,
            content=f"{Sentinels.TIMEOUT} {source_name} timed out after {budget_seconds:g}s",
            outcome=SourceOutcome.TIMEOUT,
            meta=meta,
        )

    @classmethod
    def failed(cls, source_name: str, reason: str, **meta: Any) -> SourceResult:
        return cls(
            source_name=source_name,
            content=f"{Sentinels.ERROR} {source_name} failed: {reason}",
            outcome=SourceOutcome.ERROR,
            meta=meta,
        )

    @classmethod
    def empty(cls, source_name: str, content: str = "", **meta: Any) -> SourceResult:
        return cls(source_name=source_name, content=content, outcome=SourceOutcome.EMPTY, meta=meta)


# === Cache envelopes (one per namespace) ===


class _Envelope(BaseModel):
    model_config = ConfigDict(strict=True, populate_by_name=True, extra="ignore")


class RetrievedDocument(_Envelope):
    content: str
    similarity: float
    id: str | int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RagEnvelope(_Envelope):
    content: str
    retrieved_count: int | None = Field(default=None, alias="retrievedCount")
    average_similarity: float | None = Field(default=None, alias="averageSimilarity")


class ScrapeEnvelope(_Envelope):
    url: str
    title: str
    description: str | None = None
    content: str
    timestamp: float


class DeepResearchEnvelope(_Envelope):
    content: str
    model: str
    timestamp: float
    query: str | None = None


E = TypeVar("E", bound=_Envelope)


def epoch_millis() -> int:
    return int(time.time() * 1000)


class SourceFetcher(ABC, Generic[E]):
    """Template for one source: cache lookup, deadline race, write-back.

    Subclasses supply the envelope type, ``fetch_live`` and ``render``.
    """

    source_name: ClassVar[str]
    namespace: ClassVar[CacheNamespace]
    envelope_type: ClassVar[type[_Envelope]]
    empty_content: ClassVar[str] = ""

    def __init__(self, cache: CacheStore, *, timeout: float, ttl: int | None = None):
        self._cache = cache
        self.timeout = timeout
        self._ttl = ttl

    def cache_key(self, query: str, options: dict[str, Any]) -> str:
        return query_key(query, options)

    def parse_cached(self, value: Any) -> E | None:
        """Validate a cached value against the namespace envelope; None if it does not fit."""
        if not isinstance(value, dict):
            return None
        try:
            return self.envelope_type.model_validate(value)  # type: ignore[return-value]
        except ValidationError:
            return None

    def to_cache(self, envelope: E) -> dict[str, Any]:
        return envelope.model_dump(by_alias=True, exclude_none=True)

    @abstractmethod
    async def fetch_live(self, query: str, options: dict[str, Any]) -> E | None:
        """Call the underlying capability. None means "nothing found"."""

    @abstractmethod
    def render(self, envelope: E) -> str:
        """Turn an envelope into the text handed to prompt assembly."""

    def has_content(self, envelope: E) -> bool:
        return bool(envelope.content.strip())  # type: ignore[attr-defined]

    async def fetch(self, query: str, options: dict[str, Any] | None = None) -> SourceResult:
        options = dict(options or {})
        started = time.perf_counter()
        key = self.cache_key(query, options)

        cached = await self._cache.get(self.namespace, key)
        if cached is not None:
            envelope = self.parse_cached(cached)
            if envelope is not None and self.has_content(envelope):
                return self._record(
                    SourceResult(
                        source_name=self.source_name,
                        content=self.render(envelope),
                        outcome=SourceOutcome.CACHE_HIT,
                        meta={"cache_key": key},
                    ),
                    started,
                )
            logger.warning(
                "cache.invalid_shape",
                source=self.source_name,
                namespace=str(self.namespace),
                key=key,
                value_type=type(cached).__name__,
            )

        try:
            outcome = await race_with_outcome(
                lambda: self.fetch_live(query, options),
                self.timeout,
                None,
                label=str(self.namespace),
            )
        except ConfigurationError:
            raise
        except (httpx.HTTPError, ValidationError, ValueError, KeyError) as exc:
            logger.warning(
                "source.fetch_failed",
                source=self.source_name,
                error_type=type(exc).__name__,
                error=str(exc)[:200],
            )
            return self._record(
                SourceResult.failed(self.source_name, type(exc).__name__, cache_key=key), started
            )
        except Exception as exc:
            logger.exception("source.unexpected_error", source=self.source_name)
            return self._record(
                SourceResult.failed(self.source_name, type(exc).__name__, cache_key=key), started
            )

        if outcome.timed_out:
            return self._record(
                SourceResult.timed_out(self.source_name, self.timeout, cache_key=key), started
            )

        envelope = outcome.value
        if envelope is None or not self.has_content(envelope):
            return self._record(
                SourceResult.empty(self.source_name, self.empty_content, cache_key=key), started
            )

        await self._cache.set(self.namespace, key, self.to_cache(envelope), ttl=self._ttl)
        return self._record(
            SourceResult(
                source_name=self.source_name,
                content=self.render(envelope),
                outcome=SourceOutcome.LIVE,
                meta={"cache_key": key, "elapsed_ms": outcome.elapsed_ms},
            ),
            started,
        )

    def _record(self, result: SourceResult, started: float) -> SourceResult:
        duration = time.perf_counter() - started
        source_calls_total.labels(source=self.source_name, outcome=result.outcome.value).inc()
        source_call_duration_seconds.labels(source=self.source_name).observe(duration)
        logger.info(
            "source.fetched",
            source=self.source_name,
            outcome=result.outcome.value,
            content_length=len(result.content),
            duration_ms=int(duration * 1000),
        )
        return result


def combine_results(source_name: str, results: list[SourceResult]) -> SourceResult:
    """Merge per-URL results into one source result.

    Usable parts are joined with a separator. With no usable part, the outcome
    is ``timeout`` if any part timed out, else ``error`` if any failed, else
    ``empty``.
    """
    usable = [r for r in results if r.usable]
    meta: dict[str, Any] = {"parts": [r.outcome.value for r in results]}
    if usable:
        all_cached = all(r.from_cache for r in usable)
        return SourceResult(
            source_name=source_name,
            content=SCRAPE_SEPARATOR.join(r.content for r in usable),
            outcome=SourceOutcome.CACHE_HIT if all_cached else SourceOutcome.LIVE,
            meta=meta,
        )

    content = "\n".join(r.content for r in results if r.content)
    outcomes = {r.outcome for r in results}
    if SourceOutcome.TIMEOUT in outcomes:
        outcome = SourceOutcome.TIMEOUT
    elif SourceOutcome.ERROR in outcomes:
        outcome = SourceOutcome.ERROR
    else:
        outcome = SourceOutcome.EMPTY
    return SourceResult(source_name=source_name, content=content, outcome=outcome, meta=meta)
