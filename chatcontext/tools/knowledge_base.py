"""Knowledge-base search over the vector store.

Cached as a RagEnvelope. A raw list of documents written by older code is
still accepted and re-rendered.
"""

from typing import Any, Protocol

import structlog
from pydantic import TypeAdapter, ValidationError

from chatcontext.core.cache import CacheStore
from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.constants import CacheNamespace, Sentinels, SourceName
from chatcontext.tools.base import RagEnvelope, RetrievedDocument, SourceFetcher

logger = structlog.get_logger(__name__)

_DOCUMENTS = TypeAdapter(list[RetrievedDocument])


class VectorSearch(Protocol):
    async def search(
        self, query: str, *, limit: int, threshold: float
    ) -> list[RetrievedDocument]: ...


def format_documents(documents: list[RetrievedDocument]) -> RagEnvelope:
    """Render documents under a count/similarity header."""
    average = sum(doc.similarity for doc in documents) / len(documents)
    blocks = [
        f"Document {index} [Similarity: {doc.similarity:.2f}]:\n{doc.content}\n"
        for index, doc in enumerate(documents, start=1)
    ]
    header = (
        f"Found {len(documents)} relevant documents "
        f"(average similarity: {round(average * 100)}%)"
    )
    return RagEnvelope(
        content=f"{header}\n\n" + "\n---\n\n".join(blocks),
        retrieved_count=len(documents),
        average_similarity=round(average, 4),
    )


class KnowledgeBaseFetcher(SourceFetcher[RagEnvelope]):
    source_name = SourceName.KNOWLEDGE_BASE
    namespace = CacheNamespace.RAG
    envelope_type = RagEnvelope
    empty_content = Sentinels.NO_KB_RESULTS

    def __init__(
        self,
        cache: CacheStore,
        search: VectorSearch,
        settings: Settings | None = None,
    ):
        settings = settings or default_settings
        super().__init__(cache, timeout=settings.KB_TIMEOUT, ttl=settings.CACHE_TTL_RAG)
        self._search = search
        self._limit = settings.KB_MATCH_LIMIT
        self._threshold = settings.KB_SIMILARITY_THRESHOLD

    async def fetch(self, query: str, options: dict[str, Any] | None = None):
        merged = {"limit": self._limit, "threshold": self._threshold, **(options or {})}
        return await super().fetch(query, merged)

    def parse_cached(self, value: Any) -> RagEnvelope | None:
        if isinstance(value, list):
            try:
                documents = _DOCUMENTS.validate_python(value)
            except ValidationError:
                return None
            return format_documents(documents) if documents else None
        return super().parse_cached(value)

    async def fetch_live(self, query: str, options: dict[str, Any]) -> RagEnvelope | None:
        documents = await self._search.search(
            query, limit=int(options["limit"]), threshold=float(options["threshold"])
        )
        if not documents:
            logger.info("knowledge_base.no_matches", query_length=len(query))
            return None
        envelope = format_documents(documents)
        logger.info(
            "knowledge_base.matched",
            results_count=envelope.retrieved_count,
            avg_similarity=envelope.average_similarity,
            top_similarity=documents[0].similarity,
        )
        return envelope

    def render(self, envelope: RagEnvelope) -> str:
        return envelope.content
