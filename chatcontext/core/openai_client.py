"""Shared AsyncOpenAI client for embeddings and title completions.

One client per worker process keeps a single httpx connection pool alive
across turns instead of opening a new one per call.
"""

from openai import AsyncOpenAI

from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.exceptions import ConfigurationError

_openai_client: AsyncOpenAI | None = None


def get_openai_client(settings: Settings | None = None) -> AsyncOpenAI:
    """Return (or lazily create) the module-level AsyncOpenAI client."""
    global _openai_client
    if _openai_client is None:
        settings = settings or default_settings
        if not settings.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is required for embeddings and titles")
        _openai_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _openai_client


async def close_openai_client() -> None:
    global _openai_client
    if _openai_client is not None:
        await _openai_client.close()
        _openai_client = None
