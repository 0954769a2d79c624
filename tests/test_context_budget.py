from __future__ import annotations

import pytest

from core.config import ContextConfig
from core.context_budget import (
    ContextBudgeter,
    estimate_messages_tokens,
    estimate_tokens,
    message_tokens,
    trim_to_count,
    truncate,
)
from core.models import Message


def _msg(role: str, content: str) -> Message:
    return Message(role=role, content=content)


def _history() -> list[Message]:
    return [
        _msg("system", "s" * 40),  # 10 tokens
        _msg("user", "a" * 40),
        _msg("assistant", "b" * 40),
        _msg("user", "c" * 40),
        _msg("assistant", "d" * 40),
    ]


def test_estimate_tokens_weights_dense_scripts() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("你好吗") == 2


def test_block_content_only_counts_text() -> None:
    message = Message(
        role="user",
        content=(
            {"type": "text", "text": "abcdefgh"},
            {"type": "image_url", "image_url": {"url": "https://example.invalid/x.png"}},
        ),
    )

    assert message.text() == "abcdefgh"
    assert message_tokens(message) == 2


def test_messages_estimate_includes_framing() -> None:
    assert estimate_messages_tokens(_history()) == 5 * (10 + 4)


def test_truncate_keeps_newest_messages_in_original_order() -> None:
    history = _history()

    result = truncate(history, max_tokens=30)

    assert result == [history[0], history[3], history[4]]


def test_truncate_keeps_oldest_when_requested() -> None:
    history = _history()

    result = truncate(history, max_tokens=30, keep_most_recent=False)

    assert result == [history[0], history[1], history[2]]


def test_truncate_stops_at_first_overflow() -> None:
    history = [
        _msg("user", "a" * 4),
        _msg("user", "b" * 400),
        _msg("user", "c" * 4),
    ]

    assert truncate(history, max_tokens=50) == [history[2]]


def test_system_messages_survive_any_budget() -> None:
    history = _history()

    assert truncate(history, max_tokens=0) == [history[0]]


def test_without_keep_system_everything_competes() -> None:
    history = _history()

    result = truncate(history, max_tokens=20, keep_system=False)

    assert result == history[3:]


@pytest.mark.parametrize("budget", [0, 10, 25, 40, 1000])
def test_truncate_never_exceeds_budget_beyond_system(budget: int) -> None:
    history = _history()

    result = truncate(history, max_tokens=budget)
    others = [message for message in result if not message.is_system]

    assert sum(message_tokens(m) for m in result) <= max(budget, message_tokens(history[0]))
    assert others == [m for m in history if m in others]


def test_trim_to_count_keeps_system_and_recent() -> None:
    history = _history()

    assert trim_to_count(history, 2) == [history[0], history[3], history[4]]
    assert trim_to_count(history, 0) == [history[0]]


def test_budgeter_applies_count_then_tokens() -> None:
    history = _history()
    budgeter = ContextBudgeter(ContextConfig(max_tokens=20, max_messages=3))

    assert budgeter.apply(history) == [history[0], history[4]]


def test_message_requires_known_role_and_content() -> None:
    with pytest.raises(ValueError):
        Message(role="narrator", content="hi")
    with pytest.raises(ValueError):
        Message(role="user", content="")

    tool_only = Message(role="assistant", tool_calls=({"id": "call_1"},))
    assert tool_only.text() == ""
