"""Shared console formatting helpers for the gateway CLI.

Keeping formatting here keeps the subcommands in app.py free of layout
details and gives every command the same look.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from core.events import describe
from core.models import KnowledgeDocument, NormalizedEvent, SearchResult, Segment

DIVIDER = "──────────────"


def _escape_md(value: str) -> str:
    for ch in r"*[`":
        value = value.replace(ch, f"\\{ch}")
    return value


def format_segments(segments: Sequence[Segment]) -> str:
    """Render planned segments with the pause that follows each one."""

    if not segments:
        return "(no segments)"

    lines: List[str] = []
    for item in segments:
        lines.append(f"[{item.sequence_index + 1}/{len(segments)}] wait {item.delay_ms:.0f} ms")
        lines.append(item.text)
        lines.append(DIVIDER)
    return "\n".join(lines)


def format_event(event: NormalizedEvent) -> str:
    """Render a normalized event as a small key/value block."""

    scope = "group" if event.is_group_scoped else "private"
    lines = [
        f"Kind:   {event.kind}",
        f"Scope:  {scope}",
        f"Actor:  {event.actor_id if event.actor_id is not None else '-'}",
        f"Target: {event.target_id if event.target_id is not None else '-'}",
    ]
    for key in sorted(event.extra):
        lines.append(f"  {key} = {event.extra[key]}")
    lines.extend([DIVIDER, describe(event)])
    return "\n".join(lines)


def _document_line(doc: KnowledgeDocument) -> str:
    tags = f" [{', '.join(doc.tags)}]" if doc.tags else ""
    return f"{doc.id} | {doc.kind} | {doc.name} | {len(doc.content)} chars{tags}"


def format_document_list(documents: Iterable[KnowledgeDocument]) -> str:
    lines = [_document_line(doc) for doc in documents]
    if not lines:
        return "No knowledge documents found."
    return "\n".join(f"{index}. {line}" for index, line in enumerate(lines, start=1))


def _format_results_text(results: Sequence[SearchResult]) -> str:
    lines = []
    for index, result in enumerate(results, start=1):
        lines.append(f"{index}. ({result.score}) {_document_line(result.doc)}")
    return "\n".join(lines)


def _format_results_markdown(results: Sequence[SearchResult]) -> str:
    lines = []
    for result in results:
        name = _escape_md(result.doc.name)
        lines.append(f"**{name}** (score: {result.score})")
        lines.append(f"`{result.doc.id}`")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_search_results(results: Sequence[SearchResult], mode: str = "text") -> str:
    """Return search hits formatted for the requested mode."""

    if not results:
        return "No matches."
    if mode == "text":
        return _format_results_text(results)
    if mode == "markdown":
        return _format_results_markdown(results)
    raise ValueError(f"Unsupported output format: {mode}")


def format_key_selection(previews: Sequence[str], strategy: str) -> str:
    """Render the masked keys picked for a sequence of simulated calls."""

    lines = [f"Strategy: {strategy}", DIVIDER]
    lines.extend(f"call {index}: {preview}" for index, preview in enumerate(previews, start=1))
    return "\n".join(lines)
