"""Pydantic request/response schemas for all API routes.

Centralised here so route files never define BaseModel subclasses directly.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Context assembly
# ---------------------------------------------------------------------------


class ContextRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=10000)
    deep_research_enabled: bool = False
    urls: list[str] | None = Field(default=None, max_length=20)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be whitespace-only")
        return v


class SourceResultOut(BaseModel):
    source_name: str
    content: str
    outcome: Literal["cache_hit", "live", "empty", "timeout", "error"]
    from_cache: bool
    retrieved_at: datetime
    meta: dict[str, Any] = Field(default_factory=dict)


class ToolResults(BaseModel):
    """Source contents keyed the way prompt assembly consumes them."""

    rag_content: str | None = None
    web_scraper: str | None = None
    deep_search: str | None = None


class ContextResponse(BaseModel):
    turn_id: str
    status: Literal["complete", "timeout"]
    query: str
    urls: list[str]
    results: list[SourceResultOut]
    used_sources: list[str]
    tool_results: ToolResults
    skipped: dict[str, str]
    summary: str
    elapsed_ms: int


class TurnTimeoutResponse(BaseModel):
    error: Literal["turn_timeout"] = "turn_timeout"
    message: str
    turn_id: str
    budget_seconds: float
    elapsed_ms: int
    used_sources: list[str]


# ---------------------------------------------------------------------------
# Attribution
# ---------------------------------------------------------------------------


class ValidateRequest(BaseModel):
    response_text: str = Field(default="", max_length=100000)
    used_sources: list[str] = Field(default_factory=list)


class ValidateResponse(BaseModel):
    text: str
    changed: bool
    missing_sources: list[str]


# ---------------------------------------------------------------------------
# Cache diagnostics
# ---------------------------------------------------------------------------


class EncodingFlags(BaseModel):
    starts_with_quote: bool = False
    ends_with_quote: bool = False
    contains_escaped_quotes: bool = False
    contains_object_notation: bool = False
    parses_as_json: bool = False
    looks_double_encoded: bool = False


class CacheInspection(BaseModel):
    key: str
    found: bool
    backend: str
    raw_type: str | None = None
    length: int | None = None
    preview: str | None = None
    flags: EncodingFlags = Field(default_factory=EncodingFlags)
    parsed_type: str | None = None
    parse_error: str | None = None
