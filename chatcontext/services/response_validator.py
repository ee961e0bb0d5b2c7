"""Attribution check for generated answers.

A deterministic text transform: every used source must be credited somewhere
in the answer, otherwise a disclosure sentence naming the missing sources is
appended. Friendly names in the disclosure are themselves attribution
phrases, so validating an already-validated answer changes nothing.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import structlog

from chatcontext.core.constants import SourceName
from chatcontext.core.metrics import attribution_disclosures_total

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AttributionRule:
    friendly_name: str
    aliases: tuple[str, ...]
    # Generic words that only count after a crediting phrase ("based on the website")
    cited_aliases: tuple[str, ...] = ()

    def patterns(self, source_name: str) -> list[re.Pattern[str]]:
        mentioned = (source_name.lower(), *self.aliases)
        bare = "|".join(re.escape(alias) for alias in mentioned)
        names = "|".join(re.escape(alias) for alias in (*mentioned, *self.cited_aliases))
        return [
            re.compile(rf"\b(?:{bare})\b", re.IGNORECASE),
            re.compile(r"\busing information from (?:the |our |your )?" + rf"(?:{names})", re.I),
            re.compile(r"\baccording to (?:the |our |your )?" + rf"(?:{names})", re.I),
            re.compile(r"\bbased on (?:the |our |your )?" + rf"(?:{names})", re.I),
        ]


_RULES: dict[str, AttributionRule] = {
    SourceName.KNOWLEDGE_BASE: AttributionRule(
        friendly_name="our knowledge base",
        aliases=("knowledge base", "internal resources", "internal knowledge", "our documentation"),
    ),
    SourceName.WEB_SCRAPER: AttributionRule(
        friendly_name="website content",
        aliases=("web scraper", "website content", "from your site", "from your website"),
        cited_aliases=("website", "web page", "webpage", "page you shared", "site"),
    ),
    SourceName.DEEP_SEARCH: AttributionRule(
        friendly_name="web research",
        aliases=("deep search", "web research", "online research", "web search", "perplexity"),
    ),
}


def _rule_for(source_name: str) -> AttributionRule:
    return _RULES.get(source_name) or AttributionRule(
        friendly_name=source_name, aliases=(source_name.lower(),)
    )


def is_attributed(response_text: str, source_name: str) -> bool:
    rule = _rule_for(source_name)
    return any(pattern.search(response_text) for pattern in rule.patterns(source_name))


def _join_names(names: list[str]) -> str:
    if len(names) == 1:
        return names[0]
    return f"{', '.join(names[:-1])} and {names[-1]}"


def disclosure_sentence(missing: Sequence[str]) -> str:
    friendly = [_rule_for(name).friendly_name for name in missing]
    return f"Note: This response incorporates information from {_join_names(friendly)}."


def validate_response(response_text: str, used_sources: Sequence[str]) -> str:
    """Return the text unchanged when every used source is credited.

    Otherwise append one disclosure sentence naming every missing source. With
    an empty response and used sources, the disclosure is the whole answer.
    """
    if not used_sources:
        return response_text

    text = response_text or ""
    missing = [name for name in dict.fromkeys(used_sources) if not is_attributed(text, name)]
    if not missing:
        return response_text

    for name in missing:
        attribution_disclosures_total.labels(source=name).inc()
    logger.info(
        "response_validator.disclosure_appended",
        missing_sources=missing,
        response_length=len(text),
    )

    sentence = disclosure_sentence(missing)
    if not text.strip():
        return sentence
    return f"{text.rstrip()}\n\n{sentence}"


def create_response_validator(used_sources: Sequence[str]) -> Callable[[str], str]:
    """Bind the used sources of a finished turn into a ``str -> str`` validator."""
    frozen = tuple(used_sources)

    def _validate(response_text: str) -> str:
        return validate_response(response_text, frozen)

    return _validate
