"""
Research stream progress tracking.

The research backend streams lines of the form ``0:<json string>``. Each
decoded string is one of:

- a system message ``\\n[System: ...]``: advances progress according to
  the configured keyword rules
- a system error ``\\n[System Error: ...]``: recorded in the log only
- anything else: a chunk of the final report text

The tracker owns no cancellation token. Progress is pushed to a sink
(normally AppStateMachine.set_research_progress), which ignores updates
once the machine has left RESEARCHING.
"""

import json
import re
from typing import Callable, List, Optional

import structlog

from src.core.config import ProgressRule, ResearchConfig, workflow_config
from src.domain.models.research import ResearchResult
from src.services.research_result_parser import parse_or_fallback

log = structlog.get_logger(__name__)

TEXT_LINE_PREFIX = "0:"
SYSTEM_PREFIX = "\n[System:"
SYSTEM_ERROR_PREFIX = "\n[System Error:"

_SYSTEM_WRAPPER_RE = re.compile(r"\n\[System: |\]$")
_TRAILING_ELLIPSIS_RE = re.compile(r"\.{3}$")

ProgressSink = Callable[[int, Optional[str]], bool]


class ResearchProgressTracker:
    """Consumes the research stream for one research run."""

    def __init__(
        self,
        progress_sink: ProgressSink,
        research_topic: Optional[str] = None,
        config: Optional[ResearchConfig] = None,
    ):
        """
        Args:
            progress_sink: Receives (percent, status_label); returns False
                when the update was ignored
            research_topic: Used for the fallback report title
            config: Research settings (defaults to workflow_config.research)
        """
        self.sink = progress_sink
        self.research_topic = research_topic
        self.config = config or workflow_config.research
        self.progress = 0
        self.logs: List[str] = []
        self._text_parts: List[str] = []
        self._pending = ""
        self.finished = False

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    def start(self) -> None:
        self._push(self.config.initial_progress, self.config.initial_status)

    def _push(self, percent: int, label: Optional[str]) -> bool:
        if self.config.enforce_monotonic_progress:
            self.progress = max(self.progress, percent)
        else:
            self.progress = percent
        return self.sink(percent, label)

    def _match_rule(self, message: str) -> ProgressRule:
        for rule in self.config.progress_rules:
            if any(keyword in message for keyword in rule.keywords):
                return rule
        return self.config.default_rule

    def handle_system_message(self, message: str) -> None:
        """Advance progress for one system message (wrapper already stripped)."""
        self.logs.append(f"> {message}")
        rule = self._match_rule(message)
        target = min(self.progress + rule.increment, rule.cap)
        label = rule.label or message[: self.config.status_label_length]
        self._push(target, label)

    def handle_content(self, content: str) -> None:
        if content.startswith(SYSTEM_ERROR_PREFIX):
            self.logs.append(f"error: {content.strip()}")
            log.warning("research_stream_error", content=content.strip())
        elif content.startswith(SYSTEM_PREFIX):
            message = _SYSTEM_WRAPPER_RE.sub("", content)
            message = _TRAILING_ELLIPSIS_RE.sub("", message)
            self.handle_system_message(message)
        elif content.strip():
            self._text_parts.append(content)

    def feed_line(self, line: str) -> None:
        """Process one complete stream line; other line types are skipped."""
        if not line.startswith(TEXT_LINE_PREFIX):
            return
        raw = line[len(TEXT_LINE_PREFIX) :]
        try:
            content = json.loads(raw)
        except json.JSONDecodeError:
            content = raw
        if isinstance(content, str):
            self.handle_content(content)

    def feed_chunk(self, chunk: str) -> None:
        """Process a network chunk; a trailing partial line waits for more."""
        buffer = self._pending + chunk
        *lines, self._pending = buffer.split("\n")
        for line in lines:
            self.feed_line(line)

    def finish(self) -> ResearchResult:
        """Flush the stream and parse the report, falling back to raw text."""
        if self._pending:
            self.feed_line(self._pending)
            self._pending = ""
        self.finished = True
        self._push(100, self.config.complete_status)
        result = parse_or_fallback(self.text, self.research_topic)
        log.info(
            "research_stream_finished",
            text_length=len(self.text),
            log_entries=len(self.logs),
            is_fallback=result.is_fallback,
        )
        return result
