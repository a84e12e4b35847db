"""Tests for research stream progress tracking."""

import json

from src.core.config import ProgressRule, ResearchConfig
from src.services.research_progress import ResearchProgressTracker


class RecordingSink:
    """Progress sink that records every push."""

    def __init__(self, accept: bool = True):
        self.calls = []
        self.accept = accept

    def __call__(self, percent, label):
        self.calls.append((percent, label))
        return self.accept


def line(content: str) -> str:
    return f"0:{json.dumps(content)}"


def make_tracker(**config_overrides):
    sink = RecordingSink()
    tracker = ResearchProgressTracker(
        sink, research_topic="CRM vendors", config=ResearchConfig(**config_overrides)
    )
    return tracker, sink


def test_start_pushes_initial_progress():
    tracker, sink = make_tracker()
    tracker.start()
    assert sink.calls == [(5, "Initializing research agent...")]
    assert tracker.progress == 5


def test_web_search_rule_caps_at_sixty():
    tracker, sink = make_tracker()
    tracker.start()
    for _ in range(10):
        tracker.feed_line(line("\n[System: Using tool webSearch...]"))
    assert tracker.progress == 60
    assert sink.calls[-1] == (60, "Searching the web...")


def test_default_rule_uses_message_as_label():
    tracker, sink = make_tracker()
    tracker.start()
    tracker.feed_line(line("\n[System: Reading vendor pages]"))
    assert sink.calls[-1] == (7, "Reading vendor pages")
    assert tracker.logs == ["> Reading vendor pages"]


def test_progress_never_goes_backwards_when_a_lower_cap_applies():
    tracker, _ = make_tracker(
        progress_rules=[ProgressRule(keywords=["slow"], increment=1, cap=10)]
    )
    tracker.start()
    tracker.progress = 50
    tracker.feed_line(line("\n[System: slow step]"))
    assert tracker.progress == 50


def test_system_error_is_logged_not_accumulated():
    tracker, sink = make_tracker()
    tracker.feed_line(line("\n[System Error: search quota exceeded]"))
    assert tracker.text == ""
    assert tracker.logs == ["error: [System Error: search quota exceeded]"]
    assert sink.calls == []


def test_text_is_accumulated_and_other_lines_skipped():
    tracker, _ = make_tracker()
    tracker.feed_line(line('{"title": '))
    tracker.feed_line('d:{"finishReason": "stop"}')
    tracker.feed_line(line('"Report"}'))
    assert tracker.text == '{"title": "Report"}'


def test_chunks_split_mid_line():
    tracker, _ = make_tracker()
    full = line("Hello ") + "\n" + line("world")
    tracker.feed_chunk(full[:5])
    tracker.feed_chunk(full[5:])
    assert tracker.text == "Hello "
    result = tracker.finish()
    assert tracker.text == "Hello world"
    assert result.is_fallback


def test_finish_parses_report_and_pushes_complete():
    tracker, sink = make_tracker()
    tracker.start()
    tracker.feed_chunk(line('{"title": "CRM", "summary": "Use Pipedrive"}') + "\n")
    result = tracker.finish()
    assert result.title == "CRM"
    assert not result.is_fallback
    assert sink.calls[-1] == (100, "Research complete!")
    assert tracker.finished


def test_finish_falls_back_with_topic():
    tracker, _ = make_tracker()
    tracker.feed_chunk(line("No structured output today.") + "\n")
    result = tracker.finish()
    assert result.title == "Research Report: CRM vendors"
