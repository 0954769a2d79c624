"""File-system knowledge backend.

Implements the core KnowledgeBackendPort using a plain directory: one text
file per document plus an ``index.json`` with document metadata.
"""

from __future__ import annotations

import json
import logging
import os
from typing import List, Optional

from core.knowledge import INDEX_FILE

LOGGER = logging.getLogger(__name__)


class FileKnowledgeBackend:
    """Thin directory wrapper that satisfies the KnowledgeBackendPort contract."""

    def __init__(self, root: str) -> None:
        self._root = root

    @property
    def root(self) -> str:
        return self._root

    def init_dir(self) -> None:
        """Create the knowledge directory if it does not exist."""

        os.makedirs(self._root, exist_ok=True)

    def _path(self, name: str) -> str:
        # Names come from the index; keep them inside the root directory.
        path = os.path.normpath(os.path.join(self._root, name))
        root = os.path.normpath(self._root)
        if os.path.dirname(path) != root:
            raise ValueError(f"Invalid knowledge file name: {name}")
        return path

    def list_files(self) -> List[str]:
        """Return regular file names in the root directory."""

        if not os.path.isdir(self._root):
            return []
        return [
            entry.name
            for entry in os.scandir(self._root)
            if entry.is_file()
        ]

    def read_text(self, name: str) -> str:
        with open(self._path(name), "r", encoding="utf-8") as handle:
            return handle.read()

    def write_text(self, name: str, content: str) -> None:
        self.init_dir()
        with open(self._path(name), "w", encoding="utf-8") as handle:
            handle.write(content)

    def delete(self, name: str) -> bool:
        """Delete a file; returns False when it was already gone."""

        try:
            os.remove(self._path(name))
        except FileNotFoundError:
            return False
        return True

    def file_times(self, name: str) -> Optional[tuple[int, int]]:
        """Return (created, modified) in epoch milliseconds."""

        try:
            stat = os.stat(self._path(name))
        except OSError:
            return None
        created = getattr(stat, "st_birthtime", stat.st_ctime)
        return int(created * 1000), int(stat.st_mtime * 1000)

    def read_index(self) -> Optional[dict]:
        path = self._path(INDEX_FILE)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            LOGGER.error("Failed to load knowledge index %s: %s", path, exc)
            return None

    def write_index(self, index: dict) -> None:
        self.init_dir()
        path = self._path(INDEX_FILE)
        # Write to a sibling file first so a crash never leaves a torn index.
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(index, handle, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)
