"""Deep web research through an external research API."""

import re
from typing import Any, Protocol

from chatcontext.core.cache import CacheStore
from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.constants import CacheNamespace, SourceName
from chatcontext.tools.base import DeepResearchEnvelope, SourceFetcher

_QUESTION_WORDS = {"what", "who", "where", "when", "why", "how", "is", "are", "can", "do", "does"}
_TERMINAL_PUNCTUATION = re.compile(r"[.?!]$")
_MIN_QUERY_LENGTH = 10


def format_search_query(query: str) -> str:
    """Shape a user query into a research prompt.

    Very short queries ask for comprehensive coverage; queries opening with a
    question word get a question mark when they lack terminal punctuation.
    """
    formatted = query.strip()
    if len(formatted) < _MIN_QUERY_LENGTH:
        formatted = f"{formatted} - provide comprehensive information"
    if not _TERMINAL_PUNCTUATION.search(formatted):
        first_word = formatted.split(" ")[0].lower()
        if first_word in _QUESTION_WORDS:
            formatted += "?"
    return formatted


class ResearchClient(Protocol):
    model: str

    async def research(self, query: str) -> DeepResearchEnvelope | None: ...


class DeepResearchFetcher(SourceFetcher[DeepResearchEnvelope]):
    source_name = SourceName.DEEP_SEARCH
    namespace = CacheNamespace.DEEPSEARCH
    envelope_type = DeepResearchEnvelope

    def __init__(
        self,
        cache: CacheStore,
        client: ResearchClient,
        settings: Settings | None = None,
    ):
        settings = settings or default_settings
        super().__init__(
            cache, timeout=settings.DEEP_RESEARCH_TIMEOUT, ttl=settings.CACHE_TTL_DEEPSEARCH
        )
        self._client = client

    async def fetch(self, query: str, options: dict[str, Any] | None = None):
        return await super().fetch(query, {"model": self._client.model, **(options or {})})

    async def fetch_live(
        self, query: str, options: dict[str, Any]
    ) -> DeepResearchEnvelope | None:
        return await self._client.research(format_search_query(query))

    def render(self, envelope: DeepResearchEnvelope) -> str:
        return envelope.content
