"""HTTP-level tests for the context, validation and diagnostics routes."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from chatcontext.agents.orchestrator import RetrievalOrchestrator, TurnContext
from chatcontext.core.cache import CacheStore, MemoryCacheBackend
from chatcontext.core.constants import CacheNamespace, SourceName
from chatcontext.core.exceptions import TurnTimeoutError
from chatcontext.main import create_app
from chatcontext.models.schemas import ToolResults
from chatcontext.tools.base import SourceOutcome, SourceResult


@pytest.fixture
def cache(settings) -> CacheStore:
    return CacheStore(MemoryCacheBackend(), settings=settings)


def _client(settings, cache, orchestrator=None) -> TestClient:
    orchestrator = orchestrator or RetrievalOrchestrator(settings=settings)
    return TestClient(create_app(settings, cache=cache, orchestrator=orchestrator))


def _timed_out_turn() -> TurnContext:
    partial = SourceResult.timed_out(SourceName.KNOWLEDGE_BASE, 1.0)
    return TurnContext(
        turn_id="turn-1",
        status="timeout",
        query="What is the refund policy?",
        urls=[],
        results=[partial],
        used_sources=[],
        tool_results=ToolResults(),
        skipped={},
        summary="Tools used: []",
        elapsed_ms=2003,
        error=TurnTimeoutError(2.0, 2003),
    )


def test_context_with_no_sources_configured(settings, cache) -> None:
    with _client(settings, cache) as client:
        response = client.post(
            "/api/v1/context",
            json={
                "query": "What is the refund policy for sale items?",
                "deep_research_enabled": True,
            },
        )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "complete"
    assert body["results"] == []
    assert body["skipped"] == {
        SourceName.KNOWLEDGE_BASE: "not_configured",
        SourceName.WEB_SCRAPER: "no_urls",
        SourceName.DEEP_SEARCH: "not_configured",
    }
    assert body["tool_results"] == {"rag_content": None, "web_scraper": None, "deep_search": None}


def test_context_turn_timeout_returns_408(settings, cache) -> None:
    orchestrator = AsyncMock()
    orchestrator.run_turn = AsyncMock(return_value=_timed_out_turn())

    with _client(settings, cache, orchestrator) as client:
        response = client.post("/api/v1/context", json={"query": "What is the refund policy?"})

    assert response.status_code == 408
    body = response.json()
    assert body["error"] == "turn_timeout"
    assert body["turn_id"] == "turn-1"
    assert body["budget_seconds"] == 2.0
    assert body["elapsed_ms"] == 2003
    assert body["used_sources"] == []


def test_context_rejects_blank_query(settings, cache) -> None:
    with _client(settings, cache) as client:
        response = client.post("/api/v1/context", json={"query": "   "})
    assert response.status_code == 422


def test_validate_appends_disclosure(settings, cache) -> None:
    with _client(settings, cache) as client:
        response = client.post(
            "/api/v1/context/validate",
            json={
                "response_text": "Refunds are accepted within 30 days.",
                "used_sources": [SourceName.KNOWLEDGE_BASE],
            },
        )

    assert response.status_code == 200
    body = response.json()
    assert body["changed"] is True
    assert body["missing_sources"] == [SourceName.KNOWLEDGE_BASE]
    assert body["text"].endswith(
        "Note: This response incorporates information from our knowledge base."
    )


def test_validate_leaves_attributed_text_alone(settings, cache) -> None:
    text = "According to our knowledge base, refunds take 30 days."
    with _client(settings, cache) as client:
        response = client.post(
            "/api/v1/context/validate",
            json={"response_text": text, "used_sources": [SourceName.KNOWLEDGE_BASE]},
        )

    assert response.json() == {"text": text, "changed": False, "missing_sources": []}


def test_cache_inspector(settings, cache) -> None:
    with _client(settings, cache) as client:
        client.portal.call(cache.set, CacheNamespace.RAG, "abc", {"content": "stored"})
        found = client.get("/api/v1/debug/cache-inspector", params={"key": "global:rag:abc"})
        missing = client.get("/api/v1/debug/cache-inspector", params={"key": "global:rag:nope"})

    assert found.status_code == 200
    assert found.json()["parsed_type"] == "object"
    assert missing.status_code == 404


def test_health_reports_backend(settings, cache) -> None:
    with _client(settings, cache) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["cache_backend"] == "memory"


def test_health_degraded_when_redis_configured_but_unused(make_settings, cache) -> None:
    settings = make_settings(REDIS_URL="redis://cache.internal:6379")
    with _client(settings, cache) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


def test_metrics_endpoint(settings, cache) -> None:
    with _client(settings, cache) as client:
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "chatcontext_turn_duration_seconds" in response.text


def test_request_id_is_echoed(settings, cache) -> None:
    with _client(settings, cache) as client:
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_context_serializes_registered_tool_results(settings, cache) -> None:
    kb = SourceResult(
        source_name=SourceName.KNOWLEDGE_BASE,
        content="Refunds within 30 days.",
        outcome=SourceOutcome.LIVE,
    )
    turn = TurnContext(
        turn_id="turn-2",
        status="complete",
        query="What is the refund policy?",
        urls=[],
        results=[kb],
        used_sources=[SourceName.KNOWLEDGE_BASE],
        tool_results=ToolResults(rag_content="Refunds within 30 days."),
        skipped={},
        summary="Tools used: [Knowledge Base: 23 chars]",
        elapsed_ms=12,
    )
    orchestrator = AsyncMock()
    orchestrator.run_turn = AsyncMock(return_value=turn)

    with _client(settings, cache, orchestrator) as client:
        response = client.post("/api/v1/context", json={"query": "What is the refund policy?"})

    assert response.status_code == 200
    body = response.json()
    assert body["tool_results"] == {
        "rag_content": "Refunds within 30 days.",
        "web_scraper": None,
        "deep_search": None,
    }
    assert body["results"][0]["outcome"] == "live"
    assert body["results"][0]["from_cache"] is False


def test_request_id_is_generated_when_absent(settings, cache) -> None:
    with _client(settings, cache) as client:
        first = client.get("/health")
        second = client.get("/health")

    assert len(first.headers["X-Request-ID"]) == 32
    assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]
