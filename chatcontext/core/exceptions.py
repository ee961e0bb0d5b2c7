"""Error taxonomy for the retrieval core.

Transient source failures and cache backend failures never surface as
exceptions (they become SourceResult variants or cache misses). What remains
here is what callers must be able to tell apart.
"""


class ChatContextError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ChatContextError):
    """Required configuration is absent and no fallback exists. Fatal, never retried."""


class TurnTimeoutError(ChatContextError):
    """The outer per-turn deadline fired before context assembly finished."""

    def __init__(self, budget_seconds: float, elapsed_ms: int):
        self.budget_seconds = budget_seconds
        self.elapsed_ms = elapsed_ms
        super().__init__(f"turn exceeded its {budget_seconds:g}s deadline after {elapsed_ms}ms")
