import redis.asyncio as redis
import structlog

from chatcontext.core.config import Settings
from chatcontext.core.constants import OperationalKeys

logger = structlog.get_logger(__name__)

_PROBE_VALUE = "ok"


def _redacted(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


async def probe_redis(client: redis.Redis) -> bool:
    """Liveness probe: write a sentinel, read it back, verify, clean up.

    Returns False instead of raising so the caller can fall back.
    """
    try:
        await client.set(OperationalKeys.PROBE, _PROBE_VALUE, ex=60)
        value = await client.get(OperationalKeys.PROBE)
        if value != _PROBE_VALUE:
            logger.warning("redis.probe.mismatch", got=str(value)[:20])
            return False
        await client.delete(OperationalKeys.PROBE)
        return True
    except Exception as exc:
        logger.warning("redis.probe.failed", error=str(exc))
        return False


async def connect_redis(settings: Settings) -> redis.Redis | None:
    """Create and verify a Redis client, or return None when unusable.

    None means "no URL configured" or "probe failed"; either way the cache
    layer substitutes its in-process store for the rest of the process.
    """
    if not settings.REDIS_URL:
        logger.info("redis.not_configured", hint="Set REDIS_URL to enable the shared cache")
        return None

    logger.info("redis.connecting", url=_redacted(settings.REDIS_URL))
    options: dict = {
        "encoding": "utf-8",
        "decode_responses": True,
        "socket_connect_timeout": 2,
        "socket_timeout": 2,
        "max_connections": 100,
    }
    if settings.REDIS_TOKEN:
        options["password"] = settings.REDIS_TOKEN

    try:
        client = redis.from_url(settings.REDIS_URL, **options)
    except ValueError as exc:
        logger.error("redis.invalid_url", url=_redacted(settings.REDIS_URL), error=str(exc))
        return None

    if not await probe_redis(client):
        await client.aclose()
        return None

    logger.info("redis.connected", url=_redacted(settings.REDIS_URL))
    return client
