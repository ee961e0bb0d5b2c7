"""Unit tests for the per-turn ToolManager."""

import pytest

from chatcontext.core.constants import SourceName
from chatcontext.services.tool_manager import ToolManager
from chatcontext.tools.base import SourceOutcome, SourceResult


@pytest.fixture
def manager(settings) -> ToolManager:
    return ToolManager(settings)


def test_blank_content_is_never_registered(manager) -> None:
    assert manager.register_result(SourceName.KNOWLEDGE_BASE, "   \n") is False
    assert manager.register_result(SourceName.KNOWLEDGE_BASE, None) is False
    assert manager.used_sources() == []
    assert manager.result_for(SourceName.KNOWLEDGE_BASE) is None


def test_reregistering_overwrites_without_duplicates(manager) -> None:
    manager.register_result(SourceName.KNOWLEDGE_BASE, "first")
    manager.register_result(SourceName.WEB_SCRAPER, "page")
    manager.register_result(SourceName.KNOWLEDGE_BASE, "second")

    assert manager.used_sources() == [SourceName.KNOWLEDGE_BASE, SourceName.WEB_SCRAPER]
    assert manager.result_for(SourceName.KNOWLEDGE_BASE) == "second"


def test_non_explicit_registration_stores_but_does_not_mark_used(manager) -> None:
    manager.register_result(SourceName.DEEP_SEARCH, "prefetched", explicit=False)

    assert manager.has_been_used(SourceName.DEEP_SEARCH) is False
    assert manager.result_for(SourceName.DEEP_SEARCH) == "prefetched"


def test_mapping_content_is_unwrapped(manager) -> None:
    manager.register_result(SourceName.KNOWLEDGE_BASE, {"content": "from dict"})
    assert manager.result_for(SourceName.KNOWLEDGE_BASE) == "from dict"


def test_only_usable_source_results_are_registered(manager) -> None:
    manager.register_source_result(
        SourceResult.timed_out(SourceName.DEEP_SEARCH, 20)
    )
    manager.register_source_result(SourceResult.failed(SourceName.WEB_SCRAPER, "HTTPError"))
    manager.register_source_result(
        SourceResult(SourceName.KNOWLEDGE_BASE, "docs", SourceOutcome.CACHE_HIT)
    )

    assert manager.used_sources() == [SourceName.KNOWLEDGE_BASE]


def test_frozen_manager_drops_registrations(manager) -> None:
    manager.register_result(SourceName.KNOWLEDGE_BASE, "kb")
    manager.freeze()

    assert manager.register_result(SourceName.DEEP_SEARCH, "late") is False
    assert manager.used_sources() == [SourceName.KNOWLEDGE_BASE]


def test_tool_results_and_summary(manager) -> None:
    manager.register_result(SourceName.KNOWLEDGE_BASE, "abcd")
    manager.register_result(SourceName.WEB_SCRAPER, "xy")

    results = manager.tool_results()
    assert results.rag_content == "abcd"
    assert results.web_scraper == "xy"
    assert results.deep_search is None
    assert manager.summarize() == "Tools used: [Knowledge Base: 4 chars, Web Scraper: 2 chars]"


def test_tool_call_ids_are_deduplicated(manager) -> None:
    assert manager.has_tool_call_id_been_processed("call_1") is False
    manager.register_tool_call_id("call_1")
    assert manager.has_tool_call_id_been_processed("call_1") is True


def test_knowledge_base_needs_minimum_query_length(manager) -> None:
    assert manager.should_search_knowledge_base("short query") is False
    assert manager.should_search_knowledge_base("What is the refund policy?") is True


def test_knowledge_base_threshold_is_exclusive(manager, settings) -> None:
    limit = settings.KB_MIN_QUERY_LENGTH
    assert manager.should_search_knowledge_base("a" * limit) is False
    assert manager.should_search_knowledge_base("a" * (limit + 1)) is True
    assert manager.should_search_knowledge_base("  " + "a" * limit + "  ") is False


def test_scrape_only_with_urls(manager) -> None:
    assert manager.should_scrape([]) is False
    assert manager.should_scrape(["https://example.com"]) is True


@pytest.mark.parametrize(
    ("rag_length", "scrape_length", "expected"),
    [
        (6000, 9000, False),  # both extensive: skip
        (6000, 100, True),
        (100, 9000, True),
        (0, 0, True),
    ],
)
def test_deep_research_skipped_only_when_both_sources_are_extensive(
    manager, rag_length, scrape_length, expected
) -> None:
    if rag_length:
        manager.register_result(SourceName.KNOWLEDGE_BASE, "r" * rag_length)
    if scrape_length:
        manager.register_result(SourceName.WEB_SCRAPER, "s" * scrape_length)

    assert manager.should_run_deep_research(True) is expected


def test_deep_research_never_runs_when_disabled(manager) -> None:
    assert manager.should_run_deep_research(False) is False
