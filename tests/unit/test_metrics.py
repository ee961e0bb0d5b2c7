"""Unit tests for the cache statistics observer."""

from unittest.mock import patch

from chatcontext.core.metrics import CacheStatsObserver


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_hit_rate() -> None:
    observer = CacheStatsObserver(log_every=100, clock=_Clock())
    observer.record_hit("rag", "memory")
    observer.record_hit("rag", "memory")
    observer.record_miss("scrape", "memory")
    observer.record_error("get", "memory")

    assert observer.hits == 2
    assert observer.misses == 1
    assert observer.errors == 1
    assert round(observer.hit_rate, 3) == 0.667


def test_summary_logged_every_n_lookups() -> None:
    observer = CacheStatsObserver(log_every=3, log_interval=3600, clock=_Clock())

    with patch("chatcontext.core.metrics.logger") as mock_logger:
        for _ in range(7):
            observer.record_miss("rag", "memory")

    assert observer.summaries_emitted == 2
    assert mock_logger.info.call_count == 2
    assert mock_logger.info.call_args.args[0] == "cache.stats"


def test_summary_logged_after_interval() -> None:
    clock = _Clock()
    observer = CacheStatsObserver(log_every=1000, log_interval=60, clock=clock)

    with patch("chatcontext.core.metrics.logger"):
        observer.record_hit("rag", "memory")
        assert observer.summaries_emitted == 0
        clock.now = 61.0
        observer.record_hit("rag", "memory")

    assert observer.summaries_emitted == 1


def test_empty_observer_hit_rate_is_zero() -> None:
    assert CacheStatsObserver(clock=_Clock()).hit_rate == 0.0
