"""
Research result parsing.

The research agent is asked for a JSON report but its output may wrap
the JSON in prose, duplicate it, or break the markdown fences. A report
is usable when it is a JSON object with a ``title`` or a ``summary``.

Extraction strategies, in order:
    1. Every fenced block; the first usable one wins
    2. The last balanced {...} object, scanning backwards from the end
    3. Everything from the first '{' to the last '}'

When all strategies fail, build_fallback_result assembles a degraded
report from the raw text so the PRESENTING transition is never blocked.
"""

import json
import re
from typing import Any, Dict, Iterator, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from src.core.config import workflow_config
from src.core.exceptions import ResearchResultParseError
from src.domain.models.research import ResearchResult

log = structlog.get_logger(__name__)

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")

FALLBACK_FINDING = "Could not parse structured findings. See summary."


def is_usable_report(parsed: Any) -> bool:
    return isinstance(parsed, dict) and bool(parsed.get("title") or parsed.get("summary"))


def _last_balanced_object(text: str) -> Optional[str]:
    depth = 0
    end = -1
    for i in range(len(text) - 1, -1, -1):
        char = text[i]
        if char == "}":
            if depth == 0:
                end = i
            depth += 1
        elif char == "{" and depth > 0:
            depth -= 1
            if depth == 0:
                return text[i : end + 1]
    return None


def _candidates(text: str) -> Iterator[str]:
    for match in _FENCED_BLOCK_RE.finditer(text):
        block = match.group(1).strip()
        if block:
            yield block

    balanced = _last_balanced_object(text)
    if balanced:
        yield balanced

    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        yield text[first : last + 1]


def extract_report(text: str) -> Dict[str, Any]:
    """
    Find the first usable JSON report in ``text``.

    Raises:
        ResearchResultParseError: If no candidate decodes to a usable report
    """
    for candidate in _candidates(text):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if is_usable_report(parsed):
            return parsed
    raise ResearchResultParseError("Could not extract a research report with a title or summary")


def parse_research_result(text: str) -> ResearchResult:
    """
    Parse raw research output into a ResearchResult.

    Raises:
        ResearchResultParseError: If the text holds no usable report
    """
    report = extract_report(text)
    try:
        return ResearchResult.model_validate(report)
    except PydanticValidationError as e:
        raise ResearchResultParseError(
            f"Research report has malformed sections: {e.error_count()} error(s)"
        ) from e


def build_fallback_result(text: str, research_topic: Optional[str]) -> ResearchResult:
    """Degraded report built from raw text."""
    limit = workflow_config.research.fallback_summary_length
    summary = text.strip()
    if len(summary) > limit:
        summary = summary[:limit] + "..."
    return ResearchResult(
        title=f"Research Report: {research_topic or 'Untitled research'}",
        summary=summary,
        key_findings=[FALLBACK_FINDING],
        sources=[],
        is_fallback=True,
    )


def parse_or_fallback(text: str, research_topic: Optional[str]) -> ResearchResult:
    """parse_research_result, degrading to build_fallback_result on failure."""
    try:
        return parse_research_result(text)
    except ResearchResultParseError as e:
        log.warning(
            "research_result_fallback",
            reason=e.message,
            raw_length=len(text),
        )
        return build_fallback_result(text, research_topic)
