"""Perplexity chat-completions client used for deep research."""

import httpx
import structlog

from chatcontext.clients.http import HTTPCapability
from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.exceptions import ConfigurationError
from chatcontext.tools.base import DeepResearchEnvelope, epoch_millis

logger = structlog.get_logger(__name__)

_SYSTEM_PROMPT = (
    "You are a research assistant. Answer with accurate, current information "
    "and cite sources where possible."
)


class PerplexityClient(HTTPCapability):
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = settings or default_settings
        if not settings.PERPLEXITY_API_KEY:
            raise ConfigurationError("PERPLEXITY_API_KEY is required for deep research")
        super().__init__(http_client)
        self.timeout = settings.DEEP_RESEARCH_TIMEOUT
        self.model = settings.PERPLEXITY_MODEL
        self._endpoint = f"{settings.PERPLEXITY_BASE_URL.rstrip('/')}/chat/completions"
        self._headers = {
            "Authorization": f"Bearer {settings.PERPLEXITY_API_KEY}",
            "Content-Type": "application/json",
        }

    async def research(self, query: str) -> DeepResearchEnvelope | None:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
        }
        async with self.session() as client:
            response = await client.post(self._endpoint, json=payload, headers=self._headers)
            response.raise_for_status()
            data = response.json()

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices[0], dict) or "message" not in choices[0]:
            raise ValueError("Invalid response format from Perplexity API: missing message")
        content = choices[0]["message"].get("content") or ""
        if not content.strip():
            return None

        logger.info(
            "perplexity.search_success",
            response_length=len(content),
            model=data.get("model", self.model),
        )
        return DeepResearchEnvelope(
            content=content,
            model=str(data.get("model") or self.model),
            timestamp=epoch_millis(),
            query=query,
        )
