"""Prometheus metrics and the cache statistics observer.

Counters and histograms cover:
- Cache hit/miss/error rates per namespace and backend
- Source fetch outcomes and latency
- Deadline fallbacks
- Turn duration and outer-deadline timeouts
- Attribution disclosures and title generation attempts
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol

import structlog
from prometheus_client import Counter, Histogram

logger = structlog.get_logger(__name__)

# Cache metrics
cache_hits_total = Counter(
    "chatcontext_cache_hits_total",
    "Total cache hits",
    ["namespace", "backend"],  # rag/scrape/deepsearch/ops, redis/memory
)

cache_misses_total = Counter(
    "chatcontext_cache_misses_total",
    "Total cache misses",
    ["namespace", "backend"],
)

cache_errors_total = Counter(
    "chatcontext_cache_errors_total",
    "Cache backend errors swallowed as miss/no-op",
    ["operation", "backend"],
)

# Source metrics
source_calls_total = Counter(
    "chatcontext_source_calls_total",
    "Source fetches by outcome",
    ["source", "outcome"],  # cache_hit/live/empty/timeout/error
)

source_call_duration_seconds = Histogram(
    "chatcontext_source_call_duration_seconds",
    "Source fetch duration in seconds (cache lookup included)",
    ["source"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0, 20.0],
)

deadline_fallbacks_total = Counter(
    "chatcontext_deadline_fallbacks_total",
    "Operations that lost the race against their deadline",
    ["operation"],
)

# Turn metrics
turn_duration_seconds = Histogram(
    "chatcontext_turn_duration_seconds",
    "Context assembly duration per chat turn",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0, 110.0],
)

turn_timeouts_total = Counter(
    "chatcontext_turn_timeouts_total",
    "Turns that hit the outer deadline",
)

attribution_disclosures_total = Counter(
    "chatcontext_attribution_disclosures_total",
    "Responses that needed an appended source disclosure",
    ["source"],
)

title_generation_total = Counter(
    "chatcontext_title_generation_total",
    "Title generation attempts",
    ["status"],  # generated/skipped/locked/rate_limited/failed
)


class CacheObserver(Protocol):
    """Receives cache lookup outcomes. Injected into CacheStore."""

    def record_hit(self, namespace: str, backend: str) -> None: ...

    def record_miss(self, namespace: str, backend: str) -> None: ...

    def record_error(self, operation: str, backend: str) -> None: ...


class CacheStatsObserver:
    """Hit/miss bookkeeping with a periodic summary log line.

    A summary is emitted every ``log_every`` lookups or when ``log_interval``
    seconds have passed since the last one, whichever comes first.
    """

    def __init__(
        self,
        log_every: int = 20,
        log_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._log_every = log_every
        self._log_interval = log_interval
        self._clock = clock
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.summaries_emitted = 0
        self._last_logged_at = clock()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def record_hit(self, namespace: str, backend: str) -> None:
        self.hits += 1
        cache_hits_total.labels(namespace=namespace, backend=backend).inc()
        self._maybe_log()

    def record_miss(self, namespace: str, backend: str) -> None:
        self.misses += 1
        cache_misses_total.labels(namespace=namespace, backend=backend).inc()
        self._maybe_log()

    def record_error(self, operation: str, backend: str) -> None:
        self.errors += 1
        cache_errors_total.labels(operation=operation, backend=backend).inc()

    def _maybe_log(self) -> None:
        total = self.hits + self.misses
        now = self._clock()
        if total % self._log_every == 0 or now - self._last_logged_at >= self._log_interval:
            logger.info(
                "cache.stats",
                hits=self.hits,
                misses=self.misses,
                errors=self.errors,
                hit_rate=round(self.hit_rate, 3),
                since_last_log_s=round(now - self._last_logged_at, 1),
            )
            self._last_logged_at = now
            self.summaries_emitted += 1
