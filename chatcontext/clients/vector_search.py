"""Supabase ``match_documents`` vector search with OpenAI embeddings."""

from collections.abc import Awaitable, Callable
from functools import partial

import httpx
import structlog

from chatcontext.clients.http import HTTPCapability
from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.exceptions import ConfigurationError
from chatcontext.services.llm import create_embedding
from chatcontext.tools.base import RetrievedDocument

logger = structlog.get_logger(__name__)

EmbedFunction = Callable[[str], Awaitable[list[float]]]


class SupabaseVectorSearch(HTTPCapability):
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        embed: EmbedFunction | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = settings or default_settings
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        if embed is None:
            if not settings.OPENAI_API_KEY:
                raise ConfigurationError("OPENAI_API_KEY is required for query embeddings")
            embed = partial(create_embedding, model=settings.EMBEDDING_MODEL)
        super().__init__(http_client)
        self.timeout = settings.KB_TIMEOUT
        self._embed = embed
        self._rpc_url = (
            f"{settings.SUPABASE_URL.rstrip('/')}/rest/v1/rpc/{settings.SUPABASE_MATCH_FUNCTION}"
        )
        self._headers = {
            "apikey": settings.SUPABASE_SERVICE_ROLE_KEY,
            "Authorization": f"Bearer {settings.SUPABASE_SERVICE_ROLE_KEY}",
            "Content-Type": "application/json",
        }

    async def search(
        self, query: str, *, limit: int, threshold: float
    ) -> list[RetrievedDocument]:
        embedding = await self._embed(query)
        payload = {
            "query_embedding": embedding,
            "match_threshold": threshold,
            "match_count": limit,
        }
        async with self.session() as client:
            response = await client.post(self._rpc_url, json=payload, headers=self._headers)
            response.raise_for_status()
            rows = response.json()

        if not isinstance(rows, list):
            raise ValueError(f"match_documents returned {type(rows).__name__}, expected list")

        documents = [
            RetrievedDocument(
                content=str(row.get("content") or ""),
                similarity=float(row.get("similarity") or 0.0),
                id=row.get("id"),
                metadata=row.get("metadata") or {},
            )
            for row in rows
            if isinstance(row, dict)
        ]
        documents.sort(key=lambda doc: doc.similarity, reverse=True)
        logger.debug("vector_search.rpc_complete", rows=len(rows), kept=len(documents))
        return documents[:limit]
