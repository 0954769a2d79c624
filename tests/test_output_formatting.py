from __future__ import annotations

import pytest

from adapters.output_formatting import (
    format_document_list,
    format_event,
    format_key_selection,
    format_search_results,
    format_segments,
)
from core.models import KnowledgeDocument, NormalizedEvent, SearchResult, Segment


def test_format_segments_numbers_each_piece() -> None:
    text = format_segments([Segment("one", 0, 320.4), Segment("two", 1, 0.0)])

    assert text.splitlines()[0] == "[1/2] wait 320 ms"
    assert "two" in text
    assert format_segments([]) == "(no segments)"


def test_format_event_lists_extra_sorted() -> None:
    event = NormalizedEvent("recall", True, 2, 3, {"message_id": 1, "group_id": 7})

    lines = format_event(event).splitlines()

    assert lines[:4] == ["Kind:   recall", "Scope:  group", "Actor:  2", "Target: 3"]
    assert lines[4:6] == ["  group_id = 7", "  message_id = 1"]
    assert lines[-1] == "[group] 2 recalled message 1 from 3"


def test_format_search_results_modes() -> None:
    doc = KnowledgeDocument(id="kb_1", name="A*B", content="abc", tags=["t"])
    results = [SearchResult(doc, 12)]

    assert format_search_results(results) == "1. (12) kb_1 | text | A*B | 3 chars [t]"
    assert format_search_results(results, mode="markdown").startswith("**A\\*B** (score: 12)")
    assert format_search_results([]) == "No matches."
    with pytest.raises(ValueError):
        format_search_results(results, mode="html")


def test_format_document_list_and_keys() -> None:
    assert format_document_list([]) == "No knowledge documents found."
    assert format_key_selection(["aaa", "bbb"], "round-robin").splitlines()[-1] == "call 2: bbb"
