"""Shared fixtures: fake clock, in-memory Redis double, settings factory."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from chatcontext.core.cache import CacheStore, MemoryCacheBackend, RedisCacheBackend
from chatcontext.core.config import Settings


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache backend, with real TTLs."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        self._check()
        return self._live(key)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        self._check()
        if nx and self._live(key) is not None:
            return None
        self._data[key] = (value, self._clock() + ex if ex else None)
        return True

    async def incr(self, key: str) -> int:
        self._check()
        current = self._live(key)
        expires_at = self._data[key][1] if current is not None else None
        count = int(current or 0) + 1
        self._data[key] = (str(count), expires_at)
        return count

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        if self._live(key) is None:
            return False
        self._data[key] = (self._data[key][0], self._clock() + seconds)
        return True

    async def exists(self, key: str) -> int:
        self._check()
        return 1 if self._live(key) is not None else 0

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self._data.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        self.closed = True


class RecordingObserver:
    def __init__(self):
        self.hits: list[str] = []
        self.misses: list[str] = []
        self.errors: list[str] = []

    def record_hit(self, namespace: str, backend: str) -> None:
        self.hits.append(namespace)

    def record_miss(self, namespace: str, backend: str) -> None:
        self.misses.append(namespace)

    def record_error(self, operation: str, backend: str) -> None:
        self.errors.append(operation)


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def memory_cache(settings, clock, observer) -> CacheStore:
    return CacheStore(MemoryCacheBackend(timer=clock), settings=settings, observer=observer)


@pytest.fixture
def redis_cache(settings, fake_redis, observer) -> CacheStore:
    return CacheStore(RedisCacheBackend(fake_redis), settings=settings, observer=observer)
