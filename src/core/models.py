"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any provider or platform specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Tuple, Union

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"
ROLE_DEVELOPER = "developer"

ROLES = frozenset({ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL, ROLE_DEVELOPER})

ContentBlocks = Tuple[Mapping[str, Any], ...]


@dataclass(frozen=True)
class Message:
    """One conversation message as fed to a provider.

    ``content`` is either plain text or a tuple of structured blocks
    (``{"type": "text", "text": ...}``, images, tool results). Assistant
    messages may omit content when they only carry tool calls.
    """

    role: str
    content: Union[str, ContentBlocks, None] = None
    timestamp: Optional[float] = None
    tool_calls: Tuple[Mapping[str, Any], ...] = ()

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unsupported message role: {self.role}")
        if self.role != ROLE_ASSISTANT and not self.content:
            raise ValueError(f"A {self.role} message requires content")
        if self.role == ROLE_ASSISTANT and not self.content and not self.tool_calls:
            raise ValueError("An assistant message requires content or tool calls")

    @property
    def is_system(self) -> bool:
        return self.role == ROLE_SYSTEM

    def text(self) -> str:
        """Return the textual part of the content, ignoring non-text blocks."""

        if not self.content:
            return ""
        if isinstance(self.content, str):
            return self.content
        parts = [
            str(block.get("text", ""))
            for block in self.content
            if block.get("type") == "text" and block.get("text")
        ]
        return "".join(parts)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        """Build a Message from a provider-style ``{"role", "content"}`` dict."""

        content = data.get("content")
        if isinstance(content, list):
            content = tuple(content)
        return cls(
            role=data.get("role", ""),
            content=content,
            timestamp=data.get("timestamp"),
            tool_calls=tuple(data.get("tool_calls") or ()),
        )


DOC_KIND_TEXT = "text"
DOC_KIND_MARKDOWN = "markdown"
DOC_KIND_JSON = "json"

DOC_KINDS = frozenset({DOC_KIND_TEXT, DOC_KIND_MARKDOWN, DOC_KIND_JSON})


@dataclass
class KnowledgeDocument:
    """A knowledge document owned by the KnowledgeStore.

    The store mutates instances in place through its single write path;
    callers should treat returned documents as read-only snapshots.
    """

    id: str
    name: str
    content: str = ""
    kind: str = DOC_KIND_TEXT
    tags: List[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    preset_ids: List[str] = field(default_factory=list)
    file_path: Optional[str] = None

    def to_index_entry(self) -> dict:
        """Metadata persisted to the index; content lives in its own file."""

        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "presetIds": list(self.preset_ids),
            "filePath": self.file_path,
            "contentLength": len(self.content or ""),
        }

    @classmethod
    def from_index_entry(cls, entry: Mapping[str, Any]) -> "KnowledgeDocument":
        kind = entry.get("type") or DOC_KIND_TEXT
        if kind not in DOC_KINDS:
            kind = DOC_KIND_TEXT
        return cls(
            id=str(entry["id"]),
            name=entry.get("name") or str(entry["id"]),
            content=entry.get("content") or "",
            kind=kind,
            tags=list(entry.get("tags") or []),
            created_at=int(entry.get("createdAt") or 0),
            updated_at=int(entry.get("updatedAt") or 0),
            preset_ids=list(entry.get("presetIds") or []),
            file_path=entry.get("filePath"),
        )


@dataclass(frozen=True)
class SearchResult:
    """A scored knowledge search hit."""

    doc: KnowledgeDocument
    score: int


EVENT_POKE = "poke"
EVENT_REACTION = "reaction"
EVENT_RECALL = "recall"
EVENT_MEMBER_CHANGE = "member_change"
EVENT_ADMIN_CHANGE = "admin_change"
EVENT_MUTE = "mute"
EVENT_LUCKY_DRAW = "lucky_draw"
EVENT_HONOR = "honor"
EVENT_ESSENCE = "essence"
EVENT_FILE_UPLOAD = "file_upload"
EVENT_NONE = "none"


def _empty_extra() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class NormalizedEvent:
    """Canonical platform notice produced by the event normalizer."""

    kind: str
    is_group_scoped: bool = False
    actor_id: Any = None
    target_id: Any = None
    extra: Mapping[str, Any] = field(default_factory=_empty_extra)

    def __post_init__(self) -> None:
        if not isinstance(self.extra, MappingProxyType):
            object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @property
    def matched(self) -> bool:
        return self.kind != EVENT_NONE


@dataclass(frozen=True)
class Segment:
    """One outbound chat message and the pause suggested before the next one."""

    text: str
    sequence_index: int
    delay_ms: float = 0.0
