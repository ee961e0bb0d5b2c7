from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None

    # === Backing cache store (absent URL => in-process fallback) ===
    REDIS_URL: str | None = None
    REDIS_TOKEN: str | None = None
    CACHE_SCOPE: str = Field(
        default="global", description="Tenant/global prefix segment for every cache key"
    )
    MEMORY_CACHE_SIZE: int = 10000

    # === Cache TTL Configuration (seconds) ===
    CACHE_TTL_RAG: int = Field(default=43200, description="Knowledge-base results (12 hours)")
    CACHE_TTL_SCRAPE: int = Field(default=43200, description="Scraped pages (12 hours)")
    CACHE_TTL_DEEPSEARCH: int = Field(default=3600, description="Deep research results (1 hour)")
    CACHE_TTL_OPERATIONAL: int = Field(default=3600, description="Short-lived entries (1 hour)")

    # === Cache stats summary cadence ===
    CACHE_STATS_LOG_EVERY: int = 20
    CACHE_STATS_LOG_INTERVAL: float = 60.0

    # === Deadlines (seconds) ===
    KB_TIMEOUT: float = Field(default=10.0, description="Knowledge-base search budget")
    SCRAPE_TIMEOUT: float = Field(default=15.0, description="Per-URL scrape budget")
    DEEP_RESEARCH_TIMEOUT: float = Field(default=20.0, description="Deep research budget")
    TURN_TIMEOUT: float = Field(default=110.0, description="Outer per-turn deadline")

    # === Retrieval policy ===
    KB_MIN_QUERY_LENGTH: int = 15
    KB_MATCH_LIMIT: int = 5
    KB_SIMILARITY_THRESHOLD: float = 0.7
    RAG_EXTENSIVE_CHARS: int = 5000
    SCRAPE_EXTENSIVE_CHARS: int = 8000
    SCRAPER_MAX_URLS: int = 3

    # === Capability endpoints ===
    SCRAPER_SERVICE_URL: str | None = None
    SCRAPER_API_KEY: str | None = None

    PERPLEXITY_API_KEY: str | None = None
    PERPLEXITY_BASE_URL: str = "https://api.perplexity.ai"
    PERPLEXITY_MODEL: str = "sonar"

    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    SUPABASE_MATCH_FUNCTION: str = "match_documents"

    OPENAI_API_KEY: str | None = None
    EMBEDDING_MODEL: str = "text-embedding-3-small"

    # === Title generation ===
    TITLE_MODEL: str = "gpt-4o-mini"
    TITLE_LOCK_TTL: int = 30
    TITLE_GENERATION_TIMEOUT: float = Field(
        default=20.0, description="Title completion budget, kept below TITLE_LOCK_TTL"
    )
    TITLE_RATE_LIMIT: int = 10
    TITLE_RATE_WINDOW: int = 60

    # === Validators (fail fast at startup) ===

    @field_validator(
        "CACHE_TTL_RAG",
        "CACHE_TTL_SCRAPE",
        "CACHE_TTL_DEEPSEARCH",
        "CACHE_TTL_OPERATIONAL",
        "TITLE_LOCK_TTL",
        "TITLE_RATE_WINDOW",
    )
    @classmethod
    def validate_ttls(cls, v: int) -> int:
        """Validate TTL values (seconds)."""
        if v < 1:
            raise ValueError("TTL must be >= 1 second")
        if v > 604800:
            raise ValueError("TTL must be <= 604800 seconds (7 days max)")
        return v

    @field_validator(
        "KB_TIMEOUT",
        "SCRAPE_TIMEOUT",
        "DEEP_RESEARCH_TIMEOUT",
        "TURN_TIMEOUT",
        "TITLE_GENERATION_TIMEOUT",
    )
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0 seconds")
        return v

    @field_validator("KB_SIMILARITY_THRESHOLD")
    @classmethod
    def validate_similarity_threshold(cls, v: float) -> float:
        """Cosine similarity threshold must lie in 0.0-1.0."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("KB_SIMILARITY_THRESHOLD must be between 0.0 and 1.0")
        return v

    @field_validator("MEMORY_CACHE_SIZE")
    @classmethod
    def validate_memory_cache_size(cls, v: int) -> int:
        if v < 100:
            raise ValueError("MEMORY_CACHE_SIZE must be >= 100 entries")
        if v > 1_000_000:
            raise ValueError("MEMORY_CACHE_SIZE must be <= 1000000 entries")
        return v

    @field_validator(
        "KB_MIN_QUERY_LENGTH",
        "KB_MATCH_LIMIT",
        "RAG_EXTENSIVE_CHARS",
        "SCRAPE_EXTENSIVE_CHARS",
        "SCRAPER_MAX_URLS",
        "TITLE_RATE_LIMIT",
        "CACHE_STATS_LOG_EVERY",
    )
    @classmethod
    def validate_positive_counts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_deadline_nesting(self) -> Settings:
        """Per-source budgets sit inside the turn deadline; title generation inside its lock."""
        for name in ("KB_TIMEOUT", "SCRAPE_TIMEOUT", "DEEP_RESEARCH_TIMEOUT"):
            if getattr(self, name) >= self.TURN_TIMEOUT:
                raise ValueError(f"{name} must be smaller than TURN_TIMEOUT ({self.TURN_TIMEOUT}s)")
        if self.TITLE_GENERATION_TIMEOUT >= self.TITLE_LOCK_TTL:
            raise ValueError("TITLE_GENERATION_TIMEOUT must be smaller than TITLE_LOCK_TTL")
        return self


settings = Settings()
