"""Static configuration for the conversation gateway.

All user-editable settings (key rotation, context budget, knowledge, reply
segmentation, logging) live in a single JSON file. Keys themselves are
secrets and come from the environment (a .env file works too).
"""

import json
import os

from dotenv import load_dotenv

from core.config import ContextConfig, KnowledgePromptConfig, PacingConfig, SegmentConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# GATEWAY_CONFIG lets tests and deployments point at another file.
CONFIG_PATH = os.getenv("GATEWAY_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config(path: str) -> dict:
    """Load config.json; a missing file means built-in defaults."""

    if not os.path.exists(path):
        return {}

    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def parse_key_pool(raw: str | None) -> list[str]:
    """Split a comma separated key list, dropping blanks and duplicates."""

    pool: list[str] = []
    for item in (raw or "").split(","):
        key = item.strip()
        if key and key not in pool:
            pool.append(key)
    return pool


load_dotenv()

_CONFIG = _load_json_config(CONFIG_PATH)

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Key rotation: strategy name plus the env variable that holds the pool.
_keys = _CONFIG.get("keys", {})
KEY_STRATEGY = _keys.get("strategy", "random")
KEYS_ENV = _keys.get("env", "GATEWAY_API_KEYS")
API_KEYS = parse_key_pool(os.getenv(KEYS_ENV))

_context = _CONFIG.get("context", {})
CONTEXT = ContextConfig(
    max_tokens=int(_context.get("max_tokens", 8000)),
    max_messages=int(_context.get("max_messages", 20)),
    keep_system=bool(_context.get("keep_system", True)),
    keep_most_recent=bool(_context.get("keep_most_recent", True)),
)

_knowledge = _CONFIG.get("knowledge", {})
KNOWLEDGE_DIR = _resolve_path(_knowledge.get("dir", "data/knowledge"))
KNOWLEDGE_PROMPT = KnowledgePromptConfig(
    max_length=int(_knowledge.get("max_length", 10000)),
    separator=_knowledge.get("separator", "\n\n---\n\n"),
    header=_knowledge.get("header", ""),
)

# Segment size and pacing share one section because both shape outbound replies.
_segment = _CONFIG.get("segment", {})
SEGMENT = SegmentConfig(
    ideal_length=int(_segment.get("ideal_length", 300)),
    max_segments=int(_segment.get("max_segments", 5)),
)
PACING = PacingConfig(
    base_delay=float(_segment.get("base_delay", 300)),
    per_char_delay=float(_segment.get("per_char_delay", 5)),
    max_delay=float(_segment.get("max_delay", 3000)),
    jitter=float(_segment.get("jitter", 500)),
)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
