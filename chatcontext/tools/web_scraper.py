"""Web page scraping through the scraping microservice."""

from typing import Any, Protocol

import structlog

from chatcontext.core.cache import CacheStore
from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.constants import CacheNamespace, SourceName
from chatcontext.core.hashing import query_key
from chatcontext.core.url_utils import ensure_protocol, is_safe_public_url
from chatcontext.tools.base import ScrapeEnvelope, SourceFetcher, SourceResult

logger = structlog.get_logger(__name__)


class ScraperClient(Protocol):
    async def scrape(self, url: str) -> ScrapeEnvelope | None: ...


class WebScraperFetcher(SourceFetcher[ScrapeEnvelope]):
    source_name = SourceName.WEB_SCRAPER
    namespace = CacheNamespace.SCRAPE
    envelope_type = ScrapeEnvelope

    def __init__(
        self,
        cache: CacheStore,
        client: ScraperClient,
        settings: Settings | None = None,
        allowed_domains: set[str] | None = None,
    ):
        settings = settings or default_settings
        super().__init__(cache, timeout=settings.SCRAPE_TIMEOUT, ttl=settings.CACHE_TTL_SCRAPE)
        self._client = client
        self._allowed_domains = allowed_domains

    def cache_key(self, query: str, options: dict[str, Any]) -> str:
        # URL paths are case-sensitive
        return query_key(query, options, normalize=False)

    async def fetch(self, query: str, options: dict[str, Any] | None = None) -> SourceResult:
        url = ensure_protocol(query.strip())
        ok, reason = is_safe_public_url(url, self._allowed_domains)
        if not ok:
            logger.warning("web_scraper.url_rejected", url=url[:120], reason=reason)
            return SourceResult.failed(self.source_name, f"refused {url} ({reason})", url=url)
        result = await super().fetch(url, options)
        result.meta.setdefault("url", url)
        return result

    async def fetch_live(self, query: str, options: dict[str, Any]) -> ScrapeEnvelope | None:
        return await self._client.scrape(query)

    def render(self, envelope: ScrapeEnvelope) -> str:
        lines = [f"URL: {envelope.url}", f"Title: {envelope.title}"]
        if envelope.description:
            lines.append(f"Description: {envelope.description}")
        return "\n".join(lines) + f"\n\n{envelope.content}"
