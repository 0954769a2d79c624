"""Ports (interfaces) used by the core.

Ports define the minimal contracts for persistence adapters so that the
knowledge store can be reused with different backends.
"""

from __future__ import annotations

from typing import List, Optional, Protocol


class KnowledgeBackendPort(Protocol):
    """Durable storage required by the knowledge store.

    File names are relative to the backend root. The index is a single JSON
    document holding document metadata.
    """

    def list_files(self) -> List[str]:
        ...

    def read_text(self, name: str) -> str:
        ...

    def write_text(self, name: str, content: str) -> None:
        ...

    def delete(self, name: str) -> bool:
        ...

    def file_times(self, name: str) -> Optional[tuple[int, int]]:
        ...

    def read_index(self) -> Optional[dict]:
        ...

    def write_index(self, index: dict) -> None:
        ...
