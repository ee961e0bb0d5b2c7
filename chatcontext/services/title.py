"""Title generation for a conversation's first message.

Concurrent duplicate triggers for one conversation are serialized by a
cache-backed lock (SET NX with TTL) holding a per-call token. The overall
generation rate is bounded by a windowed counter shared by all conversations.
The completion runs under a budget below the lock TTL, and only the token
holder writes the title or releases the lock.
"""

from __future__ import annotations

import re
import time
import uuid
from collections.abc import Awaitable, Callable
from enum import StrEnum
from functools import partial
from typing import Protocol

import structlog

from chatcontext.core.cache import CacheStore
from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.constants import DEFAULT_TITLES, CacheNamespace, OperationalKeys
from chatcontext.core.deadline import race_with_outcome
from chatcontext.core.metrics import title_generation_total
from chatcontext.services.llm import chat_completion

logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 50
MAX_PROMPT_MESSAGE_LENGTH = 1000
FALLBACK_TITLE = "Chat Summary"

_SYSTEM_PROMPT = (
    "Create a title that summarizes the main topic or intent of the user message "
    "in 2-6 words. Do not use quotes in your response. Keep it concise and relevant."
)
_EDGE_QUOTES = re.compile(r"^[\"']|[\"']$")

TitleGenerator = Callable[[list[dict]], Awaitable[str]]


class TitleStatus(StrEnum):
    GENERATED = "generated"
    SKIPPED = "skipped"
    LOCKED = "locked"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


class TitleRepository(Protocol):
    async def get_title(self, chat_id: str) -> str | None: ...

    async def count_messages(self, chat_id: str) -> int: ...

    async def update_title(self, chat_id: str, title: str) -> None: ...


def clean_title(raw_title: str) -> str:
    title = _EDGE_QUOTES.sub("", (raw_title or "").strip())
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3] + "..."
    return title or FALLBACK_TITLE


def should_generate(current_title: str | None, message_count: int) -> bool:
    """Only untitled (or default-titled) conversations with at most two messages."""
    if current_title and current_title not in DEFAULT_TITLES:
        return False
    return message_count <= 2


class TitleService:
    def __init__(
        self,
        cache: CacheStore,
        repository: TitleRepository,
        generator: TitleGenerator | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings or default_settings
        self._cache = cache
        self._repository = repository
        self._generator = generator or partial(
            chat_completion, model=self._settings.TITLE_MODEL, temperature=0.6, max_tokens=30
        )
        self._clock = clock

    def _rate_key(self) -> str:
        window = int(self._clock() // self._settings.TITLE_RATE_WINDOW)
        return OperationalKeys.TITLE_RATE.format(window=window)

    async def _within_rate_limit(self) -> bool:
        count = await self._cache.incr(
            CacheNamespace.OPERATIONAL, self._rate_key(), ttl=self._settings.TITLE_RATE_WINDOW
        )
        # Cache unavailable: fail open
        return count is None or count <= self._settings.TITLE_RATE_LIMIT

    async def generate_and_save(self, chat_id: str, first_message: str) -> TitleStatus:
        """Generate and persist a title. Never raises; returns what happened."""
        status = await self._generate_and_save(chat_id, first_message)
        title_generation_total.labels(status=status.value).inc()
        return status

    async def _generate_and_save(self, chat_id: str, first_message: str) -> TitleStatus:
        if not first_message or not first_message.strip():
            return TitleStatus.SKIPPED

        if not await self._within_rate_limit():
            logger.warning("title.rate_limited", chat_id=chat_id)
            return TitleStatus.RATE_LIMITED

        lock_key = OperationalKeys.TITLE_LOCK.format(chat_id=chat_id)
        token = uuid.uuid4().hex
        acquired = await self._cache.set_if_absent(
            CacheNamespace.OPERATIONAL,
            lock_key,
            {"token": token, "locked_at": self._clock()},
            ttl=self._settings.TITLE_LOCK_TTL,
        )
        if not acquired:
            logger.info("title.lock_held", chat_id=chat_id)
            return TitleStatus.LOCKED

        try:
            current = await self._repository.get_title(chat_id)
            count = await self._repository.count_messages(chat_id)
            if not should_generate(current, count):
                logger.debug("title.not_needed", chat_id=chat_id, message_count=count)
                return TitleStatus.SKIPPED

            message = first_message
            if len(message) > MAX_PROMPT_MESSAGE_LENGTH:
                message = message[:MAX_PROMPT_MESSAGE_LENGTH] + "..."
            messages = [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": message},
            ]
            outcome = await race_with_outcome(
                lambda: self._generator(messages),
                self._settings.TITLE_GENERATION_TIMEOUT,
                None,
                label="title",
            )
            if outcome.timed_out:
                logger.warning("title.generation_timeout", chat_id=chat_id)
                return TitleStatus.FAILED

            # The lock may have expired and been taken by another trigger meanwhile
            if not await self._owns_lock(lock_key, token):
                logger.warning("title.lock_lost", chat_id=chat_id)
                return TitleStatus.FAILED

            title = clean_title(outcome.value)
            await self._repository.update_title(chat_id, title)
            logger.info("title.generated", chat_id=chat_id, title=title)
            return TitleStatus.GENERATED
        except Exception:
            logger.exception("title.generation_failed", chat_id=chat_id)
            return TitleStatus.FAILED
        finally:
            if await self._owns_lock(lock_key, token):
                await self._cache.delete(CacheNamespace.OPERATIONAL, lock_key)

    async def _owns_lock(self, lock_key: str, token: str) -> bool:
        holder = await self._cache.get(CacheNamespace.OPERATIONAL, lock_key)
        return isinstance(holder, dict) and holder.get("token") == token
