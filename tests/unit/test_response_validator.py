"""Unit tests for attribution validation."""

from chatcontext.core.constants import SourceName
from chatcontext.services.response_validator import (
    create_response_validator,
    is_attributed,
    validate_response,
)


def test_no_used_sources_returns_text_unchanged() -> None:
    assert validate_response("Anything at all.", []) == "Anything at all."


def test_knowledge_base_attribution_is_recognized() -> None:
    text = "According to our knowledge base, refunds are issued within 30 days."
    assert validate_response(text, [SourceName.KNOWLEDGE_BASE]) == text


def test_missing_scraper_attribution_appends_one_sentence() -> None:
    text = "Here is a concise summary of the pricing tiers."

    result = validate_response(text, [SourceName.WEB_SCRAPER])

    assert result.startswith(text)
    appended = result[len(text):].strip()
    assert appended.count(".") == 1
    assert "website content" in appended


def test_multiple_missing_sources_share_one_sentence() -> None:
    text = "Plain answer"

    result = validate_response(
        text, [SourceName.KNOWLEDGE_BASE, SourceName.WEB_SCRAPER, SourceName.DEEP_SEARCH]
    )

    appended = result[len(text):].strip()
    assert appended == (
        "Note: This response incorporates information from our knowledge base, "
        "website content and web research."
    )


def test_only_missing_sources_are_named() -> None:
    text = "Based on the web research I did, prices rose."

    result = validate_response(text, [SourceName.DEEP_SEARCH, SourceName.KNOWLEDGE_BASE])

    assert "our knowledge base" in result
    assert result.count("web research") == 1


def test_validation_is_idempotent() -> None:
    used = [SourceName.KNOWLEDGE_BASE, SourceName.WEB_SCRAPER]
    once = validate_response("Short answer.", used)
    assert validate_response(once, used) == once


def test_empty_response_becomes_the_disclosure() -> None:
    result = validate_response("", [SourceName.KNOWLEDGE_BASE])
    assert result == "Note: This response incorporates information from our knowledge base."


def test_source_specific_synonyms() -> None:
    assert is_attributed("I checked our internal resources.", SourceName.KNOWLEDGE_BASE)
    assert is_attributed("From your site: the hours are 9-5.", SourceName.WEB_SCRAPER)
    assert is_attributed("Using information from Deep Search ...", SourceName.DEEP_SEARCH)
    assert not is_attributed("Nothing relevant here.", SourceName.DEEP_SEARCH)


def test_factory_binds_used_sources() -> None:
    validator = create_response_validator([SourceName.WEB_SCRAPER])
    assert validator("The page says hello. Website content confirms it.").endswith("it.")
    assert "website content" in validator("No credit given.")


def test_passing_mention_of_a_website_is_not_credit() -> None:
    text = "I was unable to open the website, so here is a general answer."

    result = validate_response(text, [SourceName.WEB_SCRAPER])

    assert result.endswith("Note: This response incorporates information from website content.")


def test_website_counts_when_credited() -> None:
    assert is_attributed("Based on your website, the Pro plan costs $10.", SourceName.WEB_SCRAPER)
    text = "According to the web page you sent, shipping is free."
    assert is_attributed(text, SourceName.WEB_SCRAPER)
    assert not is_attributed("The web page did not load.", SourceName.WEB_SCRAPER)
