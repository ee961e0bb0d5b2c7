"""Per-turn registry of source results and the source skip policy.

A ToolManager lives for exactly one chat turn. It is created by the
orchestrator, passed down explicitly, and frozen when the turn completes or
times out; results arriving after that are dropped.
"""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.constants import SourceName
from chatcontext.models.schemas import ToolResults
from chatcontext.tools.base import SourceResult

logger = structlog.get_logger(__name__)


class ToolManager:
    def __init__(self, settings: Settings | None = None):
        self._settings = settings or default_settings
        self._results: dict[str, str] = {}
        # dict keeps first-use order
        self._used: dict[str, None] = {}
        self._tool_call_ids: set[str] = set()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Mark the turn final. Later registrations are ignored."""
        self._frozen = True

    def register_result(
        self,
        source_name: str,
        content: str | Mapping[str, object] | None,
        *,
        explicit: bool = True,
    ) -> bool:
        """Store a source's content; mark it used unless ``explicit`` is False.

        Blank content is a no-op. Re-registering a source overwrites its content
        without duplicating it in the used list. Returns whether anything was stored.
        """
        if self._frozen:
            logger.warning("tool_manager.late_registration_dropped", source=source_name)
            return False

        if isinstance(content, Mapping):
            content = content.get("content")  # type: ignore[assignment]
        if not isinstance(content, str) or not content.strip():
            return False

        self._results[source_name] = content
        if explicit:
            self._used[source_name] = None
            logger.debug(
                "tool_manager.result_registered",
                source=source_name,
                content_length=len(content),
            )
        else:
            logger.debug(
                "tool_manager.result_stored_unused",
                source=source_name,
                content_length=len(content),
            )
        return True

    def register_source_result(self, result: SourceResult) -> bool:
        """Register a fetcher result when it is usable; timeouts and errors are not."""
        if not result.usable:
            return False
        return self.register_result(result.source_name, result.content)

    def has_been_used(self, source_name: str) -> bool:
        return source_name in self._used

    def used_sources(self) -> list[str]:
        return list(self._used)

    def result_for(self, source_name: str) -> str | None:
        return self._results.get(source_name) or None

    def tool_results(self) -> ToolResults:
        return ToolResults(
            rag_content=self.result_for(SourceName.KNOWLEDGE_BASE),
            web_scraper=self.result_for(SourceName.WEB_SCRAPER),
            deep_search=self.result_for(SourceName.DEEP_SEARCH),
        )

    def register_tool_call_id(self, tool_call_id: str) -> None:
        self._tool_call_ids.add(tool_call_id)

    def has_tool_call_id_been_processed(self, tool_call_id: str) -> bool:
        return tool_call_id in self._tool_call_ids

    def summarize(self) -> str:
        parts = []
        for name in self._used:
            result = self.result_for(name)
            parts.append(f"{name}: {len(result)} chars" if result else f"{name}: No content")
        return f"Tools used: [{', '.join(parts)}]"

    # === Skip policy ===

    def should_search_knowledge_base(self, query: str) -> bool:
        """Only queries strictly longer than the threshold reach the knowledge base."""
        return len(query.strip()) > self._settings.KB_MIN_QUERY_LENGTH

    def should_scrape(self, urls: list[str]) -> bool:
        return bool(urls)

    def has_extensive_context(self) -> bool:
        """Both prior sources are rich. Either one alone is not enough."""
        rag = self.result_for(SourceName.KNOWLEDGE_BASE) or ""
        scrape = self.result_for(SourceName.WEB_SCRAPER) or ""
        return (
            len(rag) > self._settings.RAG_EXTENSIVE_CHARS
            and len(scrape) > self._settings.SCRAPE_EXTENSIVE_CHARS
        )

    def should_run_deep_research(self, enabled: bool) -> bool:
        if not enabled:
            return False
        if self.has_extensive_context():
            logger.info(
                "tool_manager.deep_research_skipped",
                reason="extensive_context",
                rag_length=len(self.result_for(SourceName.KNOWLEDGE_BASE) or ""),
                scrape_length=len(self.result_for(SourceName.WEB_SCRAPER) or ""),
            )
            return False
        return True
