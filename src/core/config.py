"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ContextConfig:
    """History budgets applied before a provider call."""

    max_tokens: int = 8000
    max_messages: int = 20
    keep_system: bool = True
    keep_most_recent: bool = True


@dataclass(frozen=True)
class SegmentConfig:
    """How long replies are cut into chat-sized pieces."""

    ideal_length: int = 300
    max_segments: int = 5


@dataclass(frozen=True)
class PacingConfig:
    """Typing-speed imitation between segments, in milliseconds."""

    base_delay: float = 300
    per_char_delay: float = 5
    max_delay: float = 3000
    jitter: float = 500


@dataclass(frozen=True)
class KnowledgePromptConfig:
    """Budget for the reference block injected into a prompt."""

    max_length: int = 10000
    separator: str = "\n\n---\n\n"
    header: str = ""
