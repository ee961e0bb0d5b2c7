"""Thin OpenAI wrappers: one chat completion, one query embedding."""

import structlog

from chatcontext.core.config import settings
from chatcontext.core.openai_client import get_openai_client

logger = structlog.get_logger(__name__)


async def chat_completion(
    messages: list[dict],
    *,
    model: str | None = None,
    temperature: float = 0.0,
    max_tokens: int | None = None,
) -> str:
    """Return the stripped content of the first choice. Upstream errors propagate."""
    model = model or settings.TITLE_MODEL
    response = await get_openai_client().chat.completions.create(
        model=model,
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    usage = getattr(response, "usage", None)
    logger.debug(
        "llm.chat_completion",
        model=model,
        prompt_tokens=getattr(usage, "prompt_tokens", None),
        completion_tokens=getattr(usage, "completion_tokens", None),
    )
    return (response.choices[0].message.content or "").strip()


async def create_embedding(text: str, *, model: str | None = None) -> list[float]:
    """Embed one query. Callers race it against their source deadline."""
    model = model or settings.EMBEDDING_MODEL
    response = await get_openai_client().embeddings.create(model=model, input=text)
    embedding = list(response.data[0].embedding)
    logger.debug("llm.embedding", model=model, dimensions=len(embedding))
    return embedding
