"""Credential rotation across a pool of provider API keys (core domain).

Rotation state is an explicitly owned object instead of a module singleton,
so each gateway process (or tenant) decides its lifetime and tests stay
isolated.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import random
import threading
import time
from typing import Callable, Dict, Mapping, Optional, Sequence, Union

from core.errors import EmptyPoolError

LOGGER = logging.getLogger(__name__)

# Keys with an error newer than this are skipped by the failover strategy.
FAILOVER_COOLDOWN_SECONDS = 5 * 60

DEFAULT_KEY_WEIGHT = 100


class KeyStrategy(str, enum.Enum):
    RANDOM = "random"
    ROUND_ROBIN = "round-robin"
    CONVERSATION_HASH = "conversation-hash"
    WEIGHTED = "weighted"
    FAILOVER = "failover"

    @classmethod
    def parse(cls, value: Union["KeyStrategy", str, None]) -> "KeyStrategy":
        """Resolve a configured strategy name, falling back to random."""

        if isinstance(value, KeyStrategy):
            return value
        name = str(value or "").strip().lower().replace("_", "-")
        if name == "conversation-affinity":
            return cls.CONVERSATION_HASH
        try:
            return cls(name)
        except ValueError:
            LOGGER.warning("Unknown key strategy %r, using random", value)
            return cls.RANDOM


def pool_fingerprint(pool: Sequence[str]) -> str:
    """Stable content hash identifying a pool regardless of object identity."""

    payload = "\n".join(pool)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _stable_hash(value: str) -> int:
    # Python's hash() is salted per process; affinity must survive restarts.
    return int(hashlib.sha256(value.encode("utf-8")).hexdigest(), 16)


def key_preview(key: str) -> str:
    """Mask a key for log lines."""

    if len(key) <= 12:
        return "***"
    return f"{key[:8]}...{key[-4:]}"


class RotationState:
    """Round-robin cursors and error marks shared by selections.

    Cursors are keyed by pool fingerprint. A single lock serializes the
    read-increment-write of a cursor.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._cursors: Dict[str, int] = {}
        self._errors: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def advance(self, pool: Sequence[str]) -> int:
        """Return the current cursor for the pool and move it forward."""

        fingerprint = pool_fingerprint(pool)
        with self._lock:
            index = self._cursors.get(fingerprint, 0)
            if index >= len(pool):
                index = 0
            self._cursors[fingerprint] = (index + 1) % len(pool)
        return index

    def cursor(self, pool: Sequence[str]) -> int:
        with self._lock:
            return self._cursors.get(pool_fingerprint(pool), 0)

    def report_error(self, key: str) -> None:
        with self._lock:
            self._errors[key] = self._clock()

    def reset_errors(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._errors.clear()
            else:
                self._errors.pop(key, None)

    def is_cooling_down(self, key: str, cooldown: float = FAILOVER_COOLDOWN_SECONDS) -> bool:
        with self._lock:
            last_error = self._errors.get(key)
        if last_error is None:
            return False
        return self._clock() - last_error < cooldown


# A strategy returns an index into the pool, or None when the data it needs
# is missing; None always means "use random".
StrategyFn = Callable[[Sequence[str], Optional[str], RotationState, random.Random], Optional[int]]


def _random_index(pool, conversation_id, state, rng) -> Optional[int]:
    return rng.randrange(len(pool))


def _round_robin_index(pool, conversation_id, state, rng) -> Optional[int]:
    return state.advance(pool)


def _conversation_hash_index(pool, conversation_id, state, rng) -> Optional[int]:
    if not conversation_id:
        return None
    return _stable_hash(str(conversation_id)) % len(pool)


def _failover_index(pool, conversation_id, state, rng) -> Optional[int]:
    for index, key in enumerate(pool):
        if not state.is_cooling_down(key):
            return index
    # Every key failed recently; the first one is as good as any.
    return 0


def weighted_strategy(weights: Mapping[str, float]) -> StrategyFn:
    """Build a weighted-random strategy; unlisted keys get the default weight."""

    def _weighted_index(pool, conversation_id, state, rng) -> Optional[int]:
        key_weights = [max(float(weights.get(key, DEFAULT_KEY_WEIGHT)), 0.0) for key in pool]
        total = sum(key_weights)
        if total <= 0:
            return None
        point = rng.random() * total
        for index, weight in enumerate(key_weights):
            point -= weight
            if point < 0:
                return index
        return len(pool) - 1

    return _weighted_index


class KeyRotator:
    """Pick one key from a pool per outbound call.

    Strategies are looked up in a table so new ones can be plugged in without
    changing ``select_key``'s signature. ``weighted`` has no built-in entry
    because it needs per-key weights; register ``weighted_strategy(...)``.
    """

    def __init__(
        self,
        state: Optional[RotationState] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.state = state or RotationState()
        self._rng = rng or random.Random()
        self._strategies: Dict[KeyStrategy, StrategyFn] = {
            KeyStrategy.RANDOM: _random_index,
            KeyStrategy.ROUND_ROBIN: _round_robin_index,
            KeyStrategy.CONVERSATION_HASH: _conversation_hash_index,
            KeyStrategy.FAILOVER: _failover_index,
        }

    def register(self, strategy: Union[KeyStrategy, str], fn: StrategyFn) -> None:
        self._strategies[KeyStrategy.parse(strategy)] = fn

    def select_key(
        self,
        pool: Sequence[str],
        strategy: Union[KeyStrategy, str, None] = KeyStrategy.RANDOM,
        conversation_id: Optional[str] = None,
    ) -> str:
        """Return the key to use for this call."""

        if not pool:
            raise EmptyPoolError()
        if len(pool) == 1:
            return pool[0]

        resolved = KeyStrategy.parse(strategy)
        fn = self._strategies.get(resolved)
        index = fn(pool, conversation_id, self.state, self._rng) if fn else None
        if index is None:
            LOGGER.debug("Strategy %s unavailable for this call, using random", resolved.value)
            index = _random_index(pool, conversation_id, self.state, self._rng)

        key = pool[index]
        LOGGER.debug("Selected key #%s (%s) via %s", index + 1, key_preview(key), resolved.value)
        return key
