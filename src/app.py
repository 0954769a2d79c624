"""Command line entry point for the conversation gateway."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional, TextIO

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.file_knowledge_backend import FileKnowledgeBackend
from adapters.output_formatting import (
    format_document_list,
    format_event,
    format_key_selection,
    format_search_results,
    format_segments,
)
from core.config import SegmentConfig
from core.errors import GatewayError
from core.events import normalize
from core.key_rotation import KeyRotator, KeyStrategy, key_preview
from core.knowledge import KnowledgeStore
from core.segmenter import plan_segments

NAME = "GATEWAY"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    """Secret values to mask; comma separated key pools are masked per key."""

    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if not value:
            continue
        values.append(value)
        values.extend(settings.parse_key_pool(value))
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: Optional[dict] = None) -> None:
    config = settings.LOGGING if config is None else config
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        # stderr keeps command output on stdout clean for piping.
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/gateway.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _read_input(path: Optional[str], stdin: TextIO) -> str:
    if path:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()
    return stdin.read()


def _segment(args: argparse.Namespace) -> None:
    text = _read_input(args.file, sys.stdin).strip()
    config = SegmentConfig(
        ideal_length=args.ideal or settings.SEGMENT.ideal_length,
        max_segments=args.max or settings.SEGMENT.max_segments,
    )
    planned = plan_segments(text, config, settings.PACING)
    LOGGER.info("Planned %s segments for %s chars", len(planned), len(text))
    print(format_segments(planned))


def _normalize(args: argparse.Namespace) -> None:
    try:
        raw = json.loads(_read_input(args.file, sys.stdin))
    except ValueError as exc:
        raise GatewayError(f"Invalid JSON notice: {exc}") from exc
    if not isinstance(raw, dict):
        raise GatewayError("A notice must be a JSON object")
    event = normalize(raw)
    print(format_event(event))


def _open_knowledge() -> KnowledgeStore:
    backend = FileKnowledgeBackend(settings.KNOWLEDGE_DIR)
    backend.init_dir()
    store = KnowledgeStore(backend)
    store.load()
    return store


def _knowledge(args: argparse.Namespace) -> None:
    store = _open_knowledge()
    if args.action == "list":
        print(format_document_list(store.list_documents()))
        return
    if args.action == "search":
        results = store.search(args.query, limit=args.limit, preset_id=args.preset)
        print(format_search_results(results, mode=args.format))
        return
    prompt_cfg = settings.KNOWLEDGE_PROMPT
    prompt = store.build_prompt(
        args.preset,
        max_length=prompt_cfg.max_length,
        separator=prompt_cfg.separator,
        header=prompt_cfg.header,
    )
    print(prompt or f"No knowledge linked to preset {args.preset}.")


def _key(args: argparse.Namespace) -> None:
    strategy = KeyStrategy.parse(args.strategy or settings.KEY_STRATEGY)
    rotator = KeyRotator()
    previews = [
        key_preview(rotator.select_key(settings.API_KEYS, strategy, args.conversation))
        for _ in range(args.count)
    ]
    print(format_key_selection(previews, strategy.value))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gateway")
    subparsers = parser.add_subparsers(dest="command")

    segment_parser = subparsers.add_parser("segment", help="Plan reply segments for text")
    segment_parser.add_argument("--file", help="Read text from a file instead of stdin")
    segment_parser.add_argument("--ideal", type=int, help="Ideal segment length")
    segment_parser.add_argument("--max", type=int, help="Maximum number of segments")
    segment_parser.set_defaults(handler=_segment)

    normalize_parser = subparsers.add_parser("normalize", help="Normalize a raw platform notice")
    normalize_parser.add_argument("--file", help="Read JSON from a file instead of stdin")
    normalize_parser.set_defaults(handler=_normalize)

    knowledge_parser = subparsers.add_parser("knowledge", help="Inspect the knowledge directory")
    knowledge_actions = knowledge_parser.add_subparsers(dest="action", required=True)
    knowledge_actions.add_parser("list", help="List documents")
    search_parser = knowledge_actions.add_parser("search", help="Search documents")
    search_parser.add_argument("query")
    search_parser.add_argument("--limit", type=int, default=10)
    search_parser.add_argument("--preset", help="Only search documents linked to a preset")
    search_parser.add_argument("--format", choices=["text", "markdown"], default="text")
    prompt_parser = knowledge_actions.add_parser("prompt", help="Build a preset's knowledge prompt")
    prompt_parser.add_argument("preset")
    knowledge_parser.set_defaults(handler=_knowledge)

    key_parser = subparsers.add_parser("key", help="Preview key selection for the configured pool")
    key_parser.add_argument("--conversation", help="Conversation id for affinity strategies")
    key_parser.add_argument("--count", type=int, default=1)
    key_parser.add_argument("--strategy", help="Override the configured strategy")
    key_parser.set_defaults(handler=_key)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        _print_banner()
        parser.print_help()
        return

    _configure_logging()
    try:
        args.handler(args)
    except GatewayError as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main()
