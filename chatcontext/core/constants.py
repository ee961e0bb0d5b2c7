from enum import StrEnum

from chatcontext.core.config import Settings


class CacheNamespace(StrEnum):
    """Logical partitions of the cache keyspace, one per source type."""

    RAG = "rag"
    SCRAPE = "scrape"
    DEEPSEARCH = "deepsearch"
    OPERATIONAL = "ops"


def namespace_ttl(namespace: CacheNamespace, settings: Settings) -> int:
    """Default TTL (seconds) for a namespace."""
    return {
        CacheNamespace.RAG: settings.CACHE_TTL_RAG,
        CacheNamespace.SCRAPE: settings.CACHE_TTL_SCRAPE,
        CacheNamespace.DEEPSEARCH: settings.CACHE_TTL_DEEPSEARCH,
        CacheNamespace.OPERATIONAL: settings.CACHE_TTL_OPERATIONAL,
    }[namespace]


class SourceName:
    """Canonical source names as exposed to prompt assembly and attribution."""

    KNOWLEDGE_BASE = "Knowledge Base"
    WEB_SCRAPER = "Web Scraper"
    DEEP_SEARCH = "Deep Search"


class OperationalKeys:
    # Keys inside CacheNamespace.OPERATIONAL
    TITLE_LOCK = "title_lock:{chat_id}"
    TITLE_RATE = "title_rate:{window}"
    PROBE = "connection-test"


class Sentinels:
    TIMEOUT = "[TIMEOUT]"
    ERROR = "[ERROR]"
    NO_KB_RESULTS = "No relevant information found in the knowledge base for your query."


DEFAULT_TITLES: frozenset[str] = frozenset(
    {"New Chat", "Untitled Conversation", "New Conversation", ""}
)
