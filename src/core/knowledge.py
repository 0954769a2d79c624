"""Knowledge store with preset linkage and lexical search (core domain).

The in-memory map is the authoritative read path; the backend only provides
durability. Every mutation goes through ``_commit`` (or ``delete``) so memory,
the preset reverse index and backing files never diverge.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import re
import time
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from core.errors import DuplicateDocumentError, NotFoundError
from core.models import (
    DOC_KIND_JSON,
    DOC_KIND_MARKDOWN,
    DOC_KIND_TEXT,
    DOC_KINDS,
    KnowledgeDocument,
    SearchResult,
)
from core.ports import KnowledgeBackendPort

LOGGER = logging.getLogger(__name__)

INDEX_VERSION = 1
INDEX_FILE = "index.json"

AUTO_IMPORT_TAG = "auto_imported"

# Below this many characters of remaining budget a document is dropped
# instead of being cut.
MIN_TRUNCATED_CHARS = 100

CONTENT_MATCH_CAP = 10

_EXTENSION_KINDS = {
    ".txt": DOC_KIND_TEXT,
    ".md": DOC_KIND_MARKDOWN,
    ".json": DOC_KIND_JSON,
}
_KIND_EXTENSIONS = {kind: ext for ext, kind in _EXTENSION_KINDS.items()}

_UNSAFE_FILENAME_CHARS = re.compile(r'[\/\\:*?"<>|]')
_HEADER_LINE = re.compile(r"^(#{1,4})\s")


def _now_ms() -> int:
    return int(time.time() * 1000)


def safe_file_name(name: str, doc_id: str, kind: str) -> str:
    """Derive a unique backing file name for a document."""

    safe_name = _UNSAFE_FILENAME_CHARS.sub("_", name)
    safe_name = re.sub(r"\s+", "_", safe_name)[:80]
    if not safe_name or not safe_name.strip("_"):
        safe_name = "doc"
    # The id prefix keeps two documents with the same name apart.
    id_prefix = doc_id.replace("kb_", "")[:8]
    return f"{safe_name}_{id_prefix}{_KIND_EXTENSIONS.get(kind, '.txt')}"


def extract_relevant_section(content: str, query: str) -> str:
    """Return the parts of ``content`` relevant to ``query``.

    Markdown sections whose header mentions the query are kept whole (until a
    header of the same or higher level). Other matching lines are kept with
    one line of context before and two after. Without any match the first
    20 lines are returned.
    """

    if not content or not query:
        return content or ""

    query_lower = query.lower()
    lines = content.split("\n")
    relevant: List[str] = []
    in_section = False
    section_depth = 0

    for index, line in enumerate(lines):
        line_lower = line.lower()
        header = _HEADER_LINE.match(line)

        if header and query_lower in line_lower:
            in_section = True
            section_depth = len(header.group(1))
            relevant.append(line)
            continue

        if in_section:
            if header and len(header.group(1)) <= section_depth:
                in_section = False
                continue
            relevant.append(line)
        elif query_lower in line_lower:
            for context_line in lines[max(0, index - 1) : min(len(lines), index + 3)]:
                if context_line not in relevant:
                    relevant.append(context_line)

    if not relevant:
        return "\n".join(lines[:20])
    return "\n".join(relevant)


class KnowledgeStore:
    """Keyed document store with a preset reverse index."""

    def __init__(
        self,
        backend: KnowledgeBackendPort,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self._documents: Dict[str, KnowledgeDocument] = {}
        # preset_id -> ordered set of doc ids (dict keys keep link order)
        self._preset_index: Dict[str, Dict[str, None]] = {}
        self.loaded = False

    # -- loading -----------------------------------------------------------

    def load(self) -> None:
        """Load the persisted index, then discover unindexed files."""

        if self.loaded:
            return

        dirty = False
        index = self._backend.read_index() or {}
        for entry in index.get("documents", []):
            try:
                doc = KnowledgeDocument.from_index_entry(entry)
            except (KeyError, TypeError, ValueError):
                LOGGER.warning("Skipping malformed index entry: %r", entry)
                dirty = True
                continue
            if doc.file_path:
                try:
                    doc.content = self._backend.read_text(doc.file_path)
                except FileNotFoundError:
                    LOGGER.warning("File %s missing, dropping document %s", doc.file_path, doc.id)
                    dirty = True
                    continue
                except OSError as exc:
                    LOGGER.warning("Failed to read %s: %s", doc.file_path, exc)
                    doc.content = ""
            self._documents[doc.id] = doc
            self._reindex(doc.id, (), doc.preset_ids)

        discovered = self._discover_files()
        if dirty or discovered:
            self._save_index()

        self.loaded = True
        linked = sum(1 for doc in self._documents.values() if doc.preset_ids)
        LOGGER.info(
            "Knowledge store loaded: documents=%s, linked=%s, discovered=%s",
            len(self._documents),
            linked,
            discovered,
        )

    def _discover_files(self) -> int:
        referenced = {doc.file_path for doc in self._documents.values() if doc.file_path}
        discovered = 0
        for name in sorted(self._backend.list_files()):
            if name == INDEX_FILE or name in referenced:
                continue
            stem, ext = os.path.splitext(name)
            kind = _EXTENSION_KINDS.get(ext.lower())
            if kind is None:
                continue
            doc_id = f"file_{stem}"
            # Never overwrite a document that already owns this id.
            if doc_id in self._documents:
                continue
            try:
                content = self._backend.read_text(name)
            except OSError as exc:
                LOGGER.warning("Failed to read %s: %s", name, exc)
                continue
            now = self._clock()
            created_at, updated_at = self._backend.file_times(name) or (now, now)
            self._documents[doc_id] = KnowledgeDocument(
                id=doc_id,
                name=name,
                content=content.strip(),
                kind=kind,
                tags=[AUTO_IMPORT_TAG],
                created_at=created_at,
                updated_at=updated_at,
                preset_ids=[],
                file_path=name,
            )
            discovered += 1
            LOGGER.info("Discovered knowledge file %s", name)
        return discovered

    # -- reads -------------------------------------------------------------

    def get(self, doc_id: str) -> Optional[KnowledgeDocument]:
        return self._documents.get(doc_id)

    def get_by_name(self, name: str) -> Optional[KnowledgeDocument]:
        for doc in self._documents.values():
            if doc.name == name:
                return doc
        return None

    def list_documents(self) -> List[KnowledgeDocument]:
        return list(self._documents.values())

    def get_for_preset(self, preset_id: str) -> List[KnowledgeDocument]:
        """Documents linked to a preset, in link order."""

        doc_ids = self._preset_index.get(preset_id, {})
        return [self._documents[doc_id] for doc_id in doc_ids if doc_id in self._documents]

    # -- writes ------------------------------------------------------------

    def create(
        self,
        name: str = "Untitled",
        content: str = "",
        kind: str = DOC_KIND_TEXT,
        tags: Optional[Iterable[str]] = None,
        preset_ids: Optional[Iterable[str]] = None,
        doc_id: Optional[str] = None,
        save_to_file: bool = True,
    ) -> KnowledgeDocument:
        """Create a document and persist it unless ``save_to_file`` is False.

        Raises DuplicateDocumentError when ``doc_id`` is already taken.
        """

        doc_id = doc_id or f"kb_{uuid.uuid4().hex}"
        if doc_id in self._documents:
            raise DuplicateDocumentError(doc_id)

        now = self._clock()
        doc = KnowledgeDocument(
            id=doc_id,
            name=name or "Untitled",
            content=content or "",
            kind=kind if kind in DOC_KINDS else DOC_KIND_TEXT,
            tags=list(dict.fromkeys(tags or [])),
            created_at=now,
            updated_at=now,
            preset_ids=list(dict.fromkeys(preset_ids or [])),
        )
        self._commit(doc, previous_links=(), write_content=save_to_file)
        LOGGER.info("Created knowledge document %s (%s, %s chars)", doc.name, doc.id, len(doc.content))
        return doc

    def update(self, doc_id: str, **changes) -> KnowledgeDocument:
        """Merge ``changes`` into a document; the id itself is immutable."""

        current = self._documents.get(doc_id)
        if current is None:
            raise NotFoundError(doc_id)

        for immutable in ("id", "created_at", "updated_at"):
            changes.pop(immutable, None)
        unknown = set(changes) - {field.name for field in dataclasses.fields(KnowledgeDocument)}
        if unknown:
            raise TypeError(f"Unknown document fields: {', '.join(sorted(unknown))}")
        if "preset_ids" in changes:
            changes["preset_ids"] = list(dict.fromkeys(changes["preset_ids"] or []))
        if "tags" in changes:
            changes["tags"] = list(dict.fromkeys(changes["tags"] or []))

        updated = dataclasses.replace(current, **changes, updated_at=self._clock())
        content_changed = "content" in changes and changes["content"] != current.content
        self._commit(updated, previous_links=current.preset_ids, write_content=content_changed)
        return updated

    def delete(self, doc_id: str) -> bool:
        """Remove a document and its backing file; False if it did not exist."""

        doc = self._documents.get(doc_id)
        if doc is None:
            return False
        if doc.file_path:
            self._backend.delete(doc.file_path)
        del self._documents[doc_id]
        self._reindex(doc_id, doc.preset_ids, ())
        self._save_index()
        LOGGER.info("Deleted knowledge document %s", doc_id)
        return True

    def link_to_preset(self, doc_id: str, preset_id: str) -> KnowledgeDocument:
        doc = self._documents.get(doc_id)
        if doc is None:
            raise NotFoundError(doc_id)
        if preset_id in doc.preset_ids:
            return doc
        linked = dataclasses.replace(
            doc,
            preset_ids=[*doc.preset_ids, preset_id],
            updated_at=self._clock(),
        )
        self._commit(linked, previous_links=doc.preset_ids, write_content=False)
        return linked

    def unlink_from_preset(self, doc_id: str, preset_id: str) -> Optional[KnowledgeDocument]:
        doc = self._documents.get(doc_id)
        if doc is None or preset_id not in doc.preset_ids:
            return doc
        unlinked = dataclasses.replace(
            doc,
            preset_ids=[pid for pid in doc.preset_ids if pid != preset_id],
            updated_at=self._clock(),
        )
        self._commit(unlinked, previous_links=doc.preset_ids, write_content=False)
        return unlinked

    def _commit(
        self,
        doc: KnowledgeDocument,
        previous_links: Sequence[str],
        write_content: bool,
    ) -> None:
        # Backing write happens first; neither memory nor `doc` changes if it fails.
        if write_content:
            file_path = doc.file_path or safe_file_name(doc.name, doc.id, doc.kind)
            self._backend.write_text(file_path, doc.content)
            doc.file_path = file_path
        self._documents[doc.id] = doc
        self._reindex(doc.id, previous_links, doc.preset_ids)
        self._save_index()

    def _reindex(self, doc_id: str, old_links: Iterable[str], new_links: Iterable[str]) -> None:
        new_links = list(new_links)
        for preset_id in old_links:
            if preset_id in new_links:
                continue
            doc_ids = self._preset_index.get(preset_id)
            if doc_ids is None:
                continue
            doc_ids.pop(doc_id, None)
            if not doc_ids:
                del self._preset_index[preset_id]
        for preset_id in new_links:
            self._preset_index.setdefault(preset_id, {})[doc_id] = None

    def _save_index(self) -> None:
        self._backend.write_index(
            {
                "version": INDEX_VERSION,
                "updatedAt": self._clock(),
                "documents": [doc.to_index_entry() for doc in self._documents.values()],
            }
        )

    def check_consistency(self) -> List[str]:
        """Return mismatches between document links and the reverse index."""

        problems: List[str] = []
        expected: Dict[str, set[str]] = {}
        for doc in self._documents.values():
            for preset_id in doc.preset_ids:
                expected.setdefault(preset_id, set()).add(doc.id)
        actual = {preset_id: set(doc_ids) for preset_id, doc_ids in self._preset_index.items()}
        for preset_id in sorted(set(expected) | set(actual)):
            missing = expected.get(preset_id, set()) - actual.get(preset_id, set())
            stale = actual.get(preset_id, set()) - expected.get(preset_id, set())
            if missing:
                problems.append(f"{preset_id}: missing {sorted(missing)}")
            if stale:
                problems.append(f"{preset_id}: stale {sorted(stale)}")
        return problems

    # -- retrieval ---------------------------------------------------------

    def search(
        self,
        query: str,
        limit: int = 10,
        preset_id: Optional[str] = None,
    ) -> List[SearchResult]:
        """Score documents lexically against ``query``.

        Scoring:
        - +10 when the name contains the whole query.
        - +5 per query term found in the name.
        - +1 per occurrence of a term in the content, capped at 10 per term.
        - +3 per tag containing any term.
        Terms are whitespace separated and at least two characters long.
        """

        query_lower = query.lower().strip()
        if not query_lower:
            return []
        terms = [term for term in query_lower.split() if len(term) > 1]

        candidates = self.get_for_preset(preset_id) if preset_id else self.list_documents()
        results: List[SearchResult] = []
        for doc in candidates:
            name = (doc.name or "").lower()
            content = (doc.content or "").lower()
            score = 0
            if query_lower in name:
                score += 10
            for term in terms:
                if term in name:
                    score += 5
                score += min(content.count(term), CONTENT_MATCH_CAP)
            for tag in doc.tags:
                tag_lower = tag.lower()
                if any(term in tag_lower for term in terms):
                    score += 3
            if score > 0:
                results.append(SearchResult(doc=doc, score=score))

        # sorted() is stable, so equal scores keep insertion order.
        results = sorted(results, key=lambda result: result.score, reverse=True)
        return results[:limit]

    def build_prompt(
        self,
        preset_id: str,
        max_length: int = 10000,
        separator: str = "\n\n---\n\n",
        header: str = "",
    ) -> str:
        """Concatenate linked documents into a bounded reference block.

        The document that would overflow ``max_length`` is cut to the
        remaining budget (plus ``...``) when more than 100 characters remain,
        otherwise it is left out. Nothing after it is considered.
        """

        docs = self.get_for_preset(preset_id)
        if not docs:
            return ""

        parts: List[str] = []
        total = 0
        for doc in docs:
            block = f"## {doc.name}\n{doc.content}"
            if total + len(block) > max_length:
                remaining = max_length - total
                if remaining > MIN_TRUNCATED_CHARS:
                    parts.append(block[:remaining] + "...")
                break
            parts.append(block)
            total += len(block)

        if not parts:
            return ""
        if header:
            parts.insert(0, header)
        return separator.join(parts)

    def get_relevant_knowledge(
        self,
        query: str,
        preset_id: Optional[str] = None,
        max_length: int = 5000,
        limit: int = 3,
    ) -> str:
        """Format the best search hits as excerpts for a tool call."""

        results = self.search(query, limit=limit, preset_id=preset_id)
        if not results:
            return ""

        parts = [f'Relevant knowledge for "{query}":']
        total = 0
        for result in results:
            section = extract_relevant_section(result.doc.content, query)
            if total + len(section) > max_length:
                section = section[: max(max_length - total - 50, 0)] + "..."
            parts.append(f"\n### {result.doc.name} (score: {result.score})")
            parts.append(section)
            total += len(section)
            if total >= max_length:
                break
        return "\n".join(parts)
