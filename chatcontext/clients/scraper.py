"""Client for the page scraping microservice (``POST /scrape``)."""

from typing import Any

import httpx
import structlog

from chatcontext.clients.http import HTTPCapability
from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.exceptions import ConfigurationError
from chatcontext.tools.base import ScrapeEnvelope, epoch_millis

logger = structlog.get_logger(__name__)


def _unwrap(payload: Any) -> dict:
    """The service answers with ``[{"data": {...}}]``, ``[{...}]`` or ``{...}``."""
    if isinstance(payload, list):
        if not payload:
            raise ValueError("scraper returned an empty list")
        first = payload[0]
        if isinstance(first, dict) and isinstance(first.get("data"), dict):
            return first["data"]
        payload = first
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected scraper payload: {type(payload).__name__}")
    return payload


class ScraperServiceClient(HTTPCapability):
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = settings or default_settings
        if not settings.SCRAPER_SERVICE_URL:
            raise ConfigurationError("SCRAPER_SERVICE_URL is required for web scraping")
        super().__init__(http_client)
        self.timeout = settings.SCRAPE_TIMEOUT
        self._endpoint = f"{settings.SCRAPER_SERVICE_URL.rstrip('/')}/scrape"
        self._headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if settings.SCRAPER_API_KEY:
            self._headers["X-API-Key"] = settings.SCRAPER_API_KEY

    async def scrape(self, url: str) -> ScrapeEnvelope | None:
        body = [{"What is this url?": url, "format": "json", "error": ""}]
        async with self.session() as client:
            response = await client.post(self._endpoint, json=body, headers=self._headers)
            response.raise_for_status()
            data = _unwrap(response.json())

        text = data.get("content") or data.get("text") or ""
        if not str(text).strip():
            logger.info("scraper.no_content", url=url[:120])
            return None
        return ScrapeEnvelope(
            url=url,
            title=str(data.get("title") or url),
            description=str(data["description"]) if data.get("description") else None,
            content=str(text),
            timestamp=epoch_millis(),
        )
