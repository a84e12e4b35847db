"""Tests for research result extraction and the fallback report."""

import json

import pytest

from src.core.exceptions import ResearchResultParseError
from src.services.research_result_parser import (
    FALLBACK_FINDING,
    build_fallback_result,
    extract_report,
    parse_or_fallback,
    parse_research_result,
)

REPORT = {
    "title": "CRM comparison",
    "summary": "HubSpot and Pipedrive fit a 20-seat team.",
    "keyFindings": ["Pipedrive is cheaper per seat"],
    "prosAndCons": {"pros": ["Fast setup"], "cons": ["Limited reporting"]},
    "pricing": {"overview": "Per seat", "tiers": [{"name": "Pro", "price": "$49", "features": "All"}]},
    "competitors": [{"name": "Salesforce", "comparison": "More complex"}],
    "sources": [{"title": "Pricing page", "url": "https://example.com", "snippet": "..."}],
    "unexpectedSection": {"ignored": True},
}


def test_fenced_report():
    text = f"Here is the report:\n```json\n{json.dumps(REPORT)}\n```\nDone."
    result = parse_research_result(text)
    assert result.title == "CRM comparison"
    assert result.key_findings == ["Pipedrive is cheaper per seat"]
    assert result.pricing.tiers[0].price == "$49"
    assert result.pros_and_cons.cons == ["Limited reporting"]
    assert not result.is_fallback


def test_first_usable_fenced_block_wins():
    text = (
        '```json\n{"note": "no title"}\n```\n'
        f"```json\n{json.dumps({'title': 'Second'})}\n```\n"
        f"```json\n{json.dumps({'title': 'Third'})}\n```"
    )
    assert extract_report(text)["title"] == "Second"


def test_last_balanced_object_without_fences():
    text = 'Thinking {"draft": true} ... final: {"summary": "Final answer", "sources": []}'
    assert extract_report(text)["summary"] == "Final answer"


def test_broken_fence_falls_back_to_braces():
    text = '```json\n{"title": "Unclosed fence", "summary": "ok"}'
    assert extract_report(text)["title"] == "Unclosed fence"


def test_no_title_or_summary_is_a_parse_error():
    with pytest.raises(ResearchResultParseError):
        parse_research_result('{"keyFindings": ["x"]}')


def test_plain_text_is_a_parse_error():
    with pytest.raises(ResearchResultParseError):
        extract_report("The agent crashed before writing JSON.")


def test_fallback_result_truncates_summary():
    text = "x" * 600
    result = build_fallback_result(text, "CRM vendors")
    assert result.title == "Research Report: CRM vendors"
    assert result.summary == "x" * 500 + "..."
    assert result.key_findings == [FALLBACK_FINDING]
    assert result.sources == []
    assert result.is_fallback


def test_parse_or_fallback_degrades():
    result = parse_or_fallback("Just prose, no JSON.", None)
    assert result.is_fallback
    assert result.summary == "Just prose, no JSON."
    assert result.title == "Research Report: Untitled research"


def test_parse_or_fallback_passes_through_good_reports():
    result = parse_or_fallback(json.dumps({"title": "Good"}), "topic")
    assert result.title == "Good"
    assert not result.is_fallback
