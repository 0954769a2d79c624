"""Outbound reply segmentation and pacing (core domain).

Long replies are cut at sentence boundaries into a few chat-sized messages.
Inline CQ codes, pictograph glyphs and ellipsis runs are swapped for
placeholders before any split decision so none of them can be cut apart.
"""

from __future__ import annotations

import math
import random
import re
from typing import List, Optional

from core.config import PacingConfig, SegmentConfig
from core.models import Segment

SENTENCE_ENDINGS = frozenset("。！？；!?;\n")

# A split is only placed after this share of the target length has accumulated.
MIN_FILL_RATIO = 0.7

PLACEHOLDER = "\ue000"

# Inline CQ codes, pictograph glyphs, ellipsis runs and any literal placeholder
# character are each swapped for one PLACEHOLDER and restored in order.
_PROTECTED = re.compile(
    r"\[CQ:[^\]]+\]"
    "|[\U0001F300-\U0001F9FF\u2600-\u26FF\u2700-\u27BF]"
    r"|\.{3,}|…+"
    f"|{PLACEHOLDER}"
)

_SENTENCE_BREAK = re.compile(r"(?<=[。！？!?.…])\s*")


def _protect(text: str) -> tuple[str, List[str]]:
    saved: List[str] = []

    def _stash(match: re.Match) -> str:
        saved.append(match.group(0))
        return PLACEHOLDER

    return _PROTECTED.sub(_stash, text), saved


def _restore(pieces: List[str], saved: List[str]) -> List[str]:
    # Pieces are consecutive slices, so placeholders are consumed in order.
    originals = iter(saved)
    return [
        "".join(next(originals) if char == PLACEHOLDER else char for char in piece)
        for piece in pieces
    ]


def segment(text: str, ideal_length: int = 300, max_segments: int = 5) -> List[str]:
    """Split ``text`` into chat segments.

    Text within ``ideal_length`` is returned unchanged as a single segment.
    Longer text targets ``ideal_length`` per segment, or
    ``ceil(length / max_segments)`` when that would need more than
    ``max_segments`` pieces. Never returns more than ``max_segments`` items.
    """

    if not text or len(text) <= ideal_length:
        return [text]

    processed, saved = _protect(text)

    if len(processed) <= ideal_length * max_segments:
        target_length = ideal_length
    else:
        target_length = math.ceil(len(processed) / max_segments)

    split_points: List[int] = []
    last_split = 0
    for index, char in enumerate(processed):
        if char in SENTENCE_ENDINGS and index - last_split >= target_length * MIN_FILL_RATIO:
            split_points.append(index + 1)
            last_split = index + 1

    pieces: List[str] = []
    start = 0
    for point in split_points:
        if point > start:
            pieces.append(processed[start:point])
            start = point
    if start < len(processed):
        pieces.append(processed[start:])

    # The fill ratio can still yield a few extra pieces; fold them into the last one.
    if max_segments > 0 and len(pieces) > max_segments:
        pieces = pieces[: max_segments - 1] + ["".join(pieces[max_segments - 1 :])]

    segments = [piece.strip() for piece in _restore(pieces, saved)]
    return [piece for piece in segments if piece]


def split_into_sentences(text: str, min_length: int = 10) -> List[str]:
    """Split text into sentences, merging neighbours shorter than ``min_length``."""

    if not text:
        return []

    sentences: List[str] = []
    for line in re.split(r"\n+", text):
        if not line.strip():
            continue
        for part in _SENTENCE_BREAK.split(line):
            part = part.strip()
            if part:
                sentences.append(part)

    merged: List[str] = []
    buffer = ""
    for sentence in sentences:
        if buffer and len(buffer) + len(sentence) < min_length:
            buffer += sentence
        else:
            if buffer:
                merged.append(buffer)
            buffer = sentence
    if buffer:
        merged.append(buffer)

    return merged or [text]


def calculate_delay(
    text: str,
    base_delay: float = 300,
    per_char_delay: float = 5,
    max_delay: float = 3000,
    jitter: float = 500,
    rng: Optional[random.Random] = None,
) -> float:
    """Milliseconds to wait after sending ``text``, imitating typing speed."""

    delay = base_delay + len(text) * per_char_delay
    if jitter > 0:
        delay += (rng or random).random() * jitter
    return min(delay, max_delay)


def plan_segments(
    text: str,
    segment_config: SegmentConfig = SegmentConfig(),
    pacing: PacingConfig = PacingConfig(),
    rng: Optional[random.Random] = None,
) -> List[Segment]:
    """Segment a reply and attach the pause to observe after each piece."""

    pieces = segment(text, segment_config.ideal_length, segment_config.max_segments)
    pieces = [piece for piece in pieces if piece]
    planned: List[Segment] = []
    for index, piece in enumerate(pieces):
        is_last = index == len(pieces) - 1
        delay = 0.0 if is_last else calculate_delay(
            piece,
            base_delay=pacing.base_delay,
            per_char_delay=pacing.per_char_delay,
            max_delay=pacing.max_delay,
            jitter=pacing.jitter,
            rng=rng,
        )
        planned.append(Segment(text=piece, sequence_index=index, delay_ms=delay))
    return planned
