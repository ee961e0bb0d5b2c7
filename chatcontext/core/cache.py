"""Namespaced cache store with TTLs and an in-process fallback.

Keys are ``<scope>:<namespace>:<key>``, e.g. ``global:rag:4525a018453d5765``.
The store is shared by every turn in the process; it never raises to callers.

Usage:
    cache = await CacheStore.connect(settings)
    await cache.set(CacheNamespace.RAG, key, {"content": "..."})
    value = await cache.get(CacheNamespace.RAG, key)
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple, Protocol

import structlog
from cachetools import TLRUCache  # type: ignore[import-untyped]
from redis.asyncio import Redis

from chatcontext.core.config import Settings
from chatcontext.core.config import settings as default_settings
from chatcontext.core.constants import CacheNamespace, namespace_ttl
from chatcontext.core.metrics import CacheObserver, CacheStatsObserver
from chatcontext.core.redis import connect_redis

logger = structlog.get_logger(__name__)


class SafeJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime and Decimal objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Decimal):
            return float(o)
        return super().default(o)


class CacheBackend(Protocol):
    name: str

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool: ...

    async def incr(self, key: str, ttl: int) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class RedisCacheBackend:
    """Networked backend. Errors propagate to CacheStore, which absorbs them."""

    name = "redis"

    def __init__(self, redis: Redis):
        self._redis = redis

    async def get(self, key: str) -> Any | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._redis.set(key, value, ex=ttl)

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        return bool(await self._redis.set(key, value, nx=True, ex=ttl))

    async def incr(self, key: str, ttl: int) -> int:
        count = int(await self._redis.incr(key))
        if count == 1:
            # First hit opens the window; later hits keep its expiry
            await self._redis.expire(key, ttl)
        return count

    async def exists(self, key: str) -> bool:
        return int(await self._redis.exists(key)) > 0

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def close(self) -> None:
        await self._redis.aclose()


class _MemoryEntry(NamedTuple):
    value: Any
    expires_at: float


def _entry_expiry(_key: str, entry: _MemoryEntry, _now: float) -> float:
    return entry.expires_at


class MemoryCacheBackend:
    """In-process replacement for Redis with the same TTL semantics.

    Expiry is lazy: an entry past its deadline is simply not returned (TLRUCache
    checks on access). Mutations happen under an asyncio.Lock and never span an
    await, so interleaved turns never observe a half-written entry.
    """

    name = "memory"

    def __init__(self, maxsize: int = 10000, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._entries: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=timer)
        self._lock = asyncio.Lock()

    def _expiry(self, ttl: int | None) -> float:
        return self._timer() + ttl if ttl else math.inf

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: str, ttl: int) -> None:
        async with self._lock:
            self._entries[key] = _MemoryEntry(value, self._expiry(ttl))

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        async with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = _MemoryEntry(value, self._expiry(ttl))
            return True

    async def incr(self, key: str, ttl: int) -> int:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                count, expires_at = 1, self._expiry(ttl)
            else:
                count, expires_at = int(entry.value) + 1, entry.expires_at
            self._entries[key] = _MemoryEntry(str(count), expires_at)
            return count

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return key in self._entries

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def close(self) -> None:
        async with self._lock:
            self._entries.clear()


def encode_value(value: Any) -> str:
    """Strings are stored verbatim; everything else as JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, cls=SafeJSONEncoder)


def decode_value(raw: Any) -> Any:
    """Parse stored text only when it looks like a JSON container.

    Values the backend already returns structured are passed through; plain
    strings come back untouched so a string is never decoded twice.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        return raw
    if raw.lstrip().startswith(("{", "[")):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("cache.decode.invalid_json", value_preview=raw[:50])
            return raw
    return raw


class CacheStore:
    """Namespaced get/set/exists/delete over a Redis or in-memory backend.

    Every public operation swallows backend failures: reads degrade to a miss,
    writes to a no-op. Containers (dict/list) and strings round-trip exactly;
    wrap bare numbers or booleans in an object.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        settings: Settings | None = None,
        observer: CacheObserver | None = None,
    ):
        self._backend = backend
        self._settings = settings or default_settings
        self._observer: CacheObserver = observer or CacheStatsObserver(
            log_every=self._settings.CACHE_STATS_LOG_EVERY,
            log_interval=self._settings.CACHE_STATS_LOG_INTERVAL,
        )
        self._scope = self._settings.CACHE_SCOPE

    @classmethod
    async def connect(
        cls,
        settings: Settings | None = None,
        *,
        observer: CacheObserver | None = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> CacheStore:
        """Build a store on Redis when reachable, else on the in-process backend."""
        settings = settings or default_settings
        client = await connect_redis(settings)
        backend: CacheBackend
        if client is not None:
            backend = RedisCacheBackend(client)
        else:
            logger.warning(
                "cache.fallback_to_memory",
                reason="redis_unavailable" if settings.REDIS_URL else "redis_not_configured",
                maxsize=settings.MEMORY_CACHE_SIZE,
            )
            backend = MemoryCacheBackend(maxsize=settings.MEMORY_CACHE_SIZE, timer=timer)
        return cls(backend, settings=settings, observer=observer)

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @property
    def observer(self) -> CacheObserver:
        return self._observer

    def full_key(self, namespace: CacheNamespace | str, key: str) -> str:
        ns = str(namespace)
        return f"{self._scope}:{ns}:{key}" if self._scope else f"{ns}:{key}"

    def _ttl(self, namespace: CacheNamespace | str, ttl: int | None) -> int:
        if ttl is not None and ttl > 0:
            return ttl
        try:
            return namespace_ttl(CacheNamespace(str(namespace)), self._settings)
        except ValueError:
            return self._settings.CACHE_TTL_OPERATIONAL

    async def get(self, namespace: CacheNamespace | str, key: str) -> Any | None:
        full_key = self.full_key(namespace, key)
        try:
            raw = await self._backend.get(full_key)
        except Exception:
            logger.exception("cache.get.error", key_preview=full_key[:60])
            self._observer.record_error("get", self.backend_name)
            self._observer.record_miss(str(namespace), self.backend_name)
            return None

        if raw is None:
            self._observer.record_miss(str(namespace), self.backend_name)
            logger.debug("cache.miss", key_preview=full_key[:60])
            return None

        self._observer.record_hit(str(namespace), self.backend_name)
        logger.debug("cache.hit", key_preview=full_key[:60])
        return decode_value(raw)

    async def set(
        self,
        namespace: CacheNamespace | str,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> None:
        full_key = self.full_key(namespace, key)
        effective_ttl = self._ttl(namespace, ttl)
        try:
            encoded = encode_value(value)
        except (TypeError, ValueError) as exc:
            logger.error("cache.set.serialization_error", key_preview=full_key[:60], error=str(exc))
            self._observer.record_error("serialize", self.backend_name)
            return
        try:
            await self._backend.set(full_key, encoded, effective_ttl)
            logger.debug("cache.set", key_preview=full_key[:60], ttl=effective_ttl)
        except Exception:
            logger.exception("cache.set.error", key_preview=full_key[:60])
            self._observer.record_error("set", self.backend_name)

    async def exists(self, namespace: CacheNamespace | str, key: str) -> bool:
        full_key = self.full_key(namespace, key)
        try:
            return await self._backend.exists(full_key)
        except Exception:
            logger.exception("cache.exists.error", key_preview=full_key[:60])
            self._observer.record_error("exists", self.backend_name)
            return False

    async def delete(self, namespace: CacheNamespace | str, key: str) -> None:
        full_key = self.full_key(namespace, key)
        try:
            await self._backend.delete(full_key)
        except Exception:
            logger.exception("cache.delete.error", key_preview=full_key[:60])
            self._observer.record_error("delete", self.backend_name)

    async def set_if_absent(
        self,
        namespace: CacheNamespace | str,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """Atomic SET NX with TTL. False when the key exists or the backend failed."""
        full_key = self.full_key(namespace, key)
        try:
            return await self._backend.set_if_absent(
                full_key, encode_value(value), self._ttl(namespace, ttl)
            )
        except Exception:
            logger.exception("cache.set_if_absent.error", key_preview=full_key[:60])
            self._observer.record_error("set_if_absent", self.backend_name)
            return False

    async def incr(
        self,
        namespace: CacheNamespace | str,
        key: str,
        ttl: int | None = None,
    ) -> int | None:
        """Increment a windowed counter. The TTL starts with the first increment.

        Returns None when the backend failed; callers decide whether to fail open.
        """
        full_key = self.full_key(namespace, key)
        try:
            return await self._backend.incr(full_key, self._ttl(namespace, ttl))
        except Exception:
            logger.exception("cache.incr.error", key_preview=full_key[:60])
            self._observer.record_error("incr", self.backend_name)
            return None

    async def get_raw(self, full_key: str) -> Any | None:
        """Undecoded value for an already-qualified key. Read-only; for diagnostics."""
        try:
            return await self._backend.get(full_key)
        except Exception:
            logger.exception("cache.get_raw.error", key_preview=full_key[:60])
            self._observer.record_error("get_raw", self.backend_name)
            return None

    async def close(self) -> None:
        try:
            await self._backend.close()
        except Exception:
            logger.exception("cache.close.error", backend=self.backend_name)
