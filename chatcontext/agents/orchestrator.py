"""RetrievalOrchestrator: assembles the context for one chat turn.

Sources run in strict priority order:
  1. Knowledge base, when the query is long enough
  2. Web scraper, when the turn carries URLs (URLs scraped concurrently)
  3. Deep research, when enabled and prior context is not already extensive

Each source is awaited to completion (including its own deadline race) before
the next skip decision is made. The whole sequence runs under the outer
per-turn deadline; when it fires the turn is returned with status
``timeout`` and whatever had been registered so far. The turn's ToolManager
is frozen on the way out, so a straggler can never write into a finished turn.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Literal

import structlog

from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.constants import SourceName
from chatcontext.core.exceptions import ConfigurationError, TurnTimeoutError
from chatcontext.core.metrics import turn_duration_seconds, turn_timeouts_total
from chatcontext.core.url_utils import ensure_protocol, extract_urls
from chatcontext.models.schemas import ToolResults
from chatcontext.services.response_validator import validate_response
from chatcontext.services.tool_manager import ToolManager
from chatcontext.tools.base import SourceFetcher, SourceResult, combine_results
from chatcontext.tools.deep_research import DeepResearchFetcher
from chatcontext.tools.knowledge_base import KnowledgeBaseFetcher
from chatcontext.tools.web_scraper import WebScraperFetcher

logger = structlog.get_logger(__name__)


def _new_turn_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class TurnRequest:
    query: str
    deep_research_enabled: bool = False
    # None: detect URLs in the query text
    urls: list[str] | None = None
    turn_id: str = field(default_factory=_new_turn_id)


@dataclass
class TurnContext:
    turn_id: str
    status: Literal["complete", "timeout"]
    query: str
    urls: list[str]
    results: list[SourceResult]
    used_sources: list[str]
    tool_results: ToolResults
    skipped: dict[str, str]
    summary: str
    elapsed_ms: int
    error: TurnTimeoutError | None = None

    @property
    def timed_out(self) -> bool:
        return self.status == "timeout"

    def result_for(self, source_name: str) -> SourceResult | None:
        for result in self.results:
            if result.source_name == source_name:
                return result
        return None

    def validate_response(self, response_text: str) -> str:
        return validate_response(response_text, self.used_sources)


class RetrievalOrchestrator:
    """Long-lived per process; everything turn-scoped is created in ``run_turn``.

    A fetcher left as None is treated as not configured and skipped.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBaseFetcher | None = None,
        web_scraper: WebScraperFetcher | None = None,
        deep_research: DeepResearchFetcher | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or default_settings
        self._knowledge_base = knowledge_base
        self._web_scraper = web_scraper
        self._deep_research = deep_research

    async def run_turn(self, request: TurnRequest) -> TurnContext:
        manager = ToolManager(self._settings)
        results: list[SourceResult] = []
        skipped: dict[str, str] = {}
        urls = self._resolve_urls(request)
        budget = self._settings.TURN_TIMEOUT
        started = time.perf_counter()
        error: TurnTimeoutError | None = None

        with structlog.contextvars.bound_contextvars(turn_id=request.turn_id):
            logger.info(
                "orchestrator.turn.started",
                query_length=len(request.query),
                url_count=len(urls),
                deep_research_enabled=request.deep_research_enabled,
            )
            try:
                await asyncio.wait_for(
                    self._assemble(request, urls, manager, results, skipped), timeout=budget
                )
                status: Literal["complete", "timeout"] = "complete"
            except TimeoutError:
                status = "timeout"
                error = TurnTimeoutError(budget, int((time.perf_counter() - started) * 1000))
                turn_timeouts_total.inc()
                logger.warning(
                    "orchestrator.turn.timeout",
                    budget_seconds=budget,
                    completed_sources=[r.source_name for r in results],
                )
            finally:
                manager.freeze()

            elapsed = time.perf_counter() - started
            turn_duration_seconds.observe(elapsed)
            context = TurnContext(
                turn_id=request.turn_id,
                status=status,
                query=request.query,
                urls=urls,
                results=list(results),
                used_sources=manager.used_sources(),
                tool_results=manager.tool_results(),
                skipped=dict(skipped),
                summary=manager.summarize(),
                elapsed_ms=int(elapsed * 1000),
                error=error,
            )
            logger.info(
                "orchestrator.turn.complete",
                status=status,
                used_sources=context.used_sources,
                skipped=context.skipped,
                elapsed_ms=context.elapsed_ms,
            )
        return context

    def _resolve_urls(self, request: TurnRequest) -> list[str]:
        found = request.urls if request.urls is not None else extract_urls(request.query)
        urls = list(dict.fromkeys(ensure_protocol(u.strip()) for u in found if u and u.strip()))
        limit = self._settings.SCRAPER_MAX_URLS
        if len(urls) > limit:
            logger.info("orchestrator.urls_truncated", found=len(urls), limit=limit)
        return urls[:limit]

    async def _assemble(
        self,
        request: TurnRequest,
        urls: list[str],
        manager: ToolManager,
        results: list[SourceResult],
        skipped: dict[str, str],
    ) -> None:
        def record(result: SourceResult) -> None:
            results.append(result)
            manager.register_source_result(result)

        # 1. Knowledge base
        if not manager.should_search_knowledge_base(request.query):
            skipped[SourceName.KNOWLEDGE_BASE] = "query_too_short"
        elif self._knowledge_base is None:
            skipped[SourceName.KNOWLEDGE_BASE] = "not_configured"
        else:
            record(await self._fetch(self._knowledge_base, request.query))

        # 2. Web scraper
        if not manager.should_scrape(urls):
            skipped[SourceName.WEB_SCRAPER] = "no_urls"
        elif self._web_scraper is None:
            skipped[SourceName.WEB_SCRAPER] = "not_configured"
        else:
            scraper = self._web_scraper
            parts = await asyncio.gather(*(self._fetch(scraper, url) for url in urls))
            record(combine_results(SourceName.WEB_SCRAPER, list(parts)))

        # 3. Deep research, decided only after both prior sources settled
        if not manager.should_run_deep_research(request.deep_research_enabled):
            skipped[SourceName.DEEP_SEARCH] = (
                "extensive_context" if request.deep_research_enabled else "disabled"
            )
        elif self._deep_research is None:
            skipped[SourceName.DEEP_SEARCH] = "not_configured"
        else:
            record(await self._fetch(self._deep_research, request.query))

    async def _fetch(self, fetcher: SourceFetcher, query: str) -> SourceResult:
        """Run one fetcher; an unexpected exception becomes an error result."""
        try:
            return await fetcher.fetch(query)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("orchestrator.fetcher_crashed", source=fetcher.source_name)
            return SourceResult.failed(fetcher.source_name, type(exc).__name__)
