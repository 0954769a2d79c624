"""Context window budgeting (core domain).

Token counts here are a cheap character-based estimate. The only contract
is that the estimate is deterministic and monotonic in text size.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Sequence

from core.config import ContextConfig
from core.models import Message

LOGGER = logging.getLogger(__name__)

# Framing overhead per message (role markers, separators).
MESSAGE_OVERHEAD_TOKENS = 4


def estimate_tokens(text: str) -> int:
    """Estimate tokens: ASCII at 4 chars/token, dense scripts at 1.5 chars/token."""

    if not text:
        return 0
    ascii_chars = sum(1 for ch in text if ord(ch) < 128)
    dense_chars = len(text) - ascii_chars
    return math.ceil(ascii_chars / 4 + dense_chars / 1.5)


def message_tokens(message: Message) -> int:
    return estimate_tokens(message.text())


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    """Estimate a whole request, including per-message framing."""

    return sum(message_tokens(message) + MESSAGE_OVERHEAD_TOKENS for message in messages)


def _partition(messages: Sequence[Message], keep_system: bool) -> tuple[List[Message], List[Message]]:
    if not keep_system:
        return [], list(messages)
    system = [message for message in messages if message.is_system]
    others = [message for message in messages if not message.is_system]
    return system, others


def truncate(
    messages: Sequence[Message],
    max_tokens: int,
    keep_system: bool = True,
    keep_most_recent: bool = True,
) -> List[Message]:
    """Return the messages that fit ``max_tokens``.

    System messages are kept unconditionally and counted first, even if they
    alone exceed the budget. Other messages are taken greedily (newest first
    when ``keep_most_recent``) until the next one would overflow; survivors
    keep their original relative order.
    """

    system, others = _partition(messages, keep_system)
    total = sum(message_tokens(message) for message in system)

    # Walk positions so survivors can be restored to input order.
    positions = range(len(others) - 1, -1, -1) if keep_most_recent else range(len(others))
    selected: List[int] = []
    for position in positions:
        cost = message_tokens(others[position])
        if total + cost > max_tokens:
            break
        total += cost
        selected.append(position)

    survivors = [others[position] for position in sorted(selected)]
    return system + survivors


def trim_to_count(messages: Sequence[Message], max_messages: int) -> List[Message]:
    """Keep system messages plus the most recent ``max_messages`` others."""

    system, others = _partition(messages, keep_system=True)
    if max_messages <= 0:
        return system
    return system + others[-max_messages:]


class ContextBudgeter:
    """Apply the configured message-count and token budgets to a history."""

    def __init__(self, config: ContextConfig) -> None:
        self._config = config

    def apply(self, messages: Sequence[Message]) -> List[Message]:
        bounded = list(messages)
        if self._config.max_messages > 0:
            bounded = trim_to_count(bounded, self._config.max_messages)
        bounded = truncate(
            bounded,
            self._config.max_tokens,
            keep_system=self._config.keep_system,
            keep_most_recent=self._config.keep_most_recent,
        )
        dropped = len(messages) - len(bounded)
        if dropped:
            LOGGER.debug("Context trimmed: %s -> %s messages", len(messages), len(bounded))
        return bounded
