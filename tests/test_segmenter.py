from __future__ import annotations

import random

from core.config import PacingConfig, SegmentConfig
from core.segmenter import PLACEHOLDER, calculate_delay, plan_segments, segment, split_into_sentences


def test_splits_after_sentence_endings_once_filled() -> None:
    assert segment("A.。B!C?", ideal_length=2, max_segments=5) == ["A.。", "B!C?"]


def test_short_text_is_returned_unchanged() -> None:
    assert segment("  hi  ", ideal_length=300) == ["  hi  "]
    assert segment("") == [""]


def test_segments_reconstruct_text_without_whitespace() -> None:
    text = "一二三。四五六！七八九？"

    result = segment(text, ideal_length=3, max_segments=5)

    assert result == ["一二三。", "四五六！", "七八九？"]
    assert "".join(result) == text


def test_markup_is_never_split() -> None:
    code = "[CQ:image,url=http://x/a?b=1;c=2]"
    text = f"first part here! {code} then more text? end"

    result = segment(text, ideal_length=10, max_segments=5)

    assert sum(code in piece for piece in result) == 1
    assert all(code in piece or "[CQ" not in piece for piece in result)


def test_pictographs_are_restored() -> None:
    text = "好的😀！再见😀？还有吗☀！"

    result = segment(text, ideal_length=3, max_segments=5)

    assert "".join(result) == text


def test_ellipsis_runs_are_restored_verbatim() -> None:
    assert segment("Hmm.... okay! sure? yes", ideal_length=5) == ["Hmm.... okay!", "sure?", "yes"]


def test_long_text_grows_segments_instead_of_count() -> None:
    text = "abc。" * 100

    result = segment(text, ideal_length=10, max_segments=5)

    assert len(result) == 5
    assert "".join(result) == text


def test_text_without_endings_stays_whole() -> None:
    text = "x" * 50

    assert segment(text, ideal_length=10, max_segments=5) == [text]


def test_split_into_sentences_merges_short_fragments() -> None:
    assert split_into_sentences("Hi. Yo. Something longer here.") == ["Hi.Yo.", "Something longer here."]
    assert split_into_sentences("Line one is long enough\n\nLine two is long too") == [
        "Line one is long enough",
        "Line two is long too",
    ]
    assert split_into_sentences("") == []


def test_delay_is_linear_and_capped() -> None:
    assert calculate_delay("abc", jitter=0) == 315
    assert calculate_delay("x" * 1000, jitter=0) == 3000


def test_delay_jitter_stays_in_bounds() -> None:
    rng = random.Random(0)

    for _ in range(100):
        delay = calculate_delay("hello", jitter=500, rng=rng)
        assert 325 <= delay < 825


def test_plan_segments_sets_delays_except_last() -> None:
    planned = plan_segments(
        "一二三。四五六！七八九？",
        SegmentConfig(ideal_length=3, max_segments=5),
        PacingConfig(jitter=0),
    )

    assert [item.sequence_index for item in planned] == [0, 1, 2]
    assert [item.delay_ms for item in planned] == [320, 320, 0.0]
    assert plan_segments("") == []


def test_placeholder_lookalikes_in_input_survive() -> None:
    text = "literal {{E0}} here. " * 3 + "smile 😀! done."

    result = segment(text, ideal_length=20, max_segments=5)

    assert result == ["literal {{E0}} here. " * 2 + "literal {{E0}} here. smile 😀!", "done."]


def test_private_use_characters_round_trip() -> None:
    text = f"x{PLACEHOLDER}y！z😀w？tail{PLACEHOLDER}"

    assert "".join(segment(text, ideal_length=3, max_segments=5)) == text
