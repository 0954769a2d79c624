from __future__ import annotations

import random
import threading
from collections import Counter

import pytest

from core.errors import EmptyPoolError
from core.key_rotation import (
    KeyRotator,
    KeyStrategy,
    RotationState,
    key_preview,
    weighted_strategy,
)

POOL = ["key-alpha-0001", "key-bravo-0002", "key-charlie-03"]


def test_empty_pool_raises() -> None:
    rotator = KeyRotator()

    with pytest.raises(EmptyPoolError):
        rotator.select_key([], KeyStrategy.ROUND_ROBIN)


def test_single_key_is_always_returned() -> None:
    rotator = KeyRotator()

    for strategy in KeyStrategy:
        assert rotator.select_key(["only"], strategy, "conv") == "only"


def test_round_robin_is_fair_over_full_cycles() -> None:
    rotator = KeyRotator()

    picks = [rotator.select_key(POOL, "round-robin") for _ in range(len(POOL) * 4)]

    assert picks[: len(POOL)] == POOL
    assert Counter(picks) == {key: 4 for key in POOL}


def test_round_robin_cursor_follows_pool_contents_not_identity() -> None:
    state = RotationState()
    rotator = KeyRotator(state=state)

    rotator.select_key(list(POOL), KeyStrategy.ROUND_ROBIN)
    second = rotator.select_key(list(POOL), KeyStrategy.ROUND_ROBIN)

    assert second == POOL[1]
    assert state.cursor(POOL) == 2


def test_round_robin_pools_have_independent_cursors() -> None:
    rotator = KeyRotator()
    other = ["x-key-0000000001", "y-key-0000000002"]

    rotator.select_key(POOL, KeyStrategy.ROUND_ROBIN)
    assert rotator.select_key(other, KeyStrategy.ROUND_ROBIN) == other[0]
    assert rotator.select_key(POOL, KeyStrategy.ROUND_ROBIN) == POOL[1]


def test_conversation_hash_is_deterministic_across_rotators() -> None:
    first = KeyRotator(rng=random.Random(1))
    second = KeyRotator(rng=random.Random(2))

    for conversation in ("user:1", "group:42", "abc"):
        picks = {first.select_key(POOL, KeyStrategy.CONVERSATION_HASH, conversation) for _ in range(5)}
        assert len(picks) == 1
        assert picks == {second.select_key(POOL, "conversation-hash", conversation)}


def test_conversation_hash_without_id_falls_back_to_random() -> None:
    rotator = KeyRotator(rng=random.Random(7))

    picks = {rotator.select_key(POOL, KeyStrategy.CONVERSATION_HASH) for _ in range(60)}

    assert picks <= set(POOL)
    assert len(picks) > 1


def test_unknown_strategy_name_falls_back_to_random() -> None:
    assert KeyStrategy.parse("least-used") is KeyStrategy.RANDOM
    assert KeyStrategy.parse(None) is KeyStrategy.RANDOM

    rotator = KeyRotator(rng=random.Random(3))
    assert rotator.select_key(POOL, "least-used") in POOL


def test_strategy_aliases_are_resolved() -> None:
    assert KeyStrategy.parse("conversation-affinity") is KeyStrategy.CONVERSATION_HASH
    assert KeyStrategy.parse("ROUND_ROBIN") is KeyStrategy.ROUND_ROBIN


def test_weighted_without_registration_falls_back_to_random() -> None:
    rotator = KeyRotator(rng=random.Random(5))

    assert rotator.select_key(POOL, KeyStrategy.WEIGHTED) in POOL


def test_weighted_strategy_respects_zero_weights() -> None:
    rotator = KeyRotator(rng=random.Random(11))
    rotator.register(KeyStrategy.WEIGHTED, weighted_strategy({POOL[0]: 0, POOL[1]: 0}))

    picks = {rotator.select_key(POOL, KeyStrategy.WEIGHTED) for _ in range(30)}

    assert picks == {POOL[2]}


def test_failover_skips_keys_in_cooldown() -> None:
    now = [1000.0]
    state = RotationState(clock=lambda: now[0])
    rotator = KeyRotator(state=state)

    assert rotator.select_key(POOL, KeyStrategy.FAILOVER) == POOL[0]

    state.report_error(POOL[0])
    assert rotator.select_key(POOL, KeyStrategy.FAILOVER) == POOL[1]

    now[0] += 301
    assert rotator.select_key(POOL, KeyStrategy.FAILOVER) == POOL[0]


def test_failover_uses_first_key_when_all_are_cooling_down() -> None:
    state = RotationState(clock=lambda: 50.0)
    for key in POOL:
        state.report_error(key)

    assert KeyRotator(state=state).select_key(POOL, KeyStrategy.FAILOVER) == POOL[0]

    state.reset_errors(POOL[1])
    assert KeyRotator(state=state).select_key(POOL, KeyStrategy.FAILOVER) == POOL[1]


def test_registered_strategy_replaces_builtin() -> None:
    rotator = KeyRotator()
    rotator.register("random", lambda pool, conversation_id, state, rng: len(pool) - 1)

    assert rotator.select_key(POOL, KeyStrategy.RANDOM) == POOL[-1]


def test_key_preview_masks_keys() -> None:
    assert key_preview("short") == "***"
    assert key_preview("sk-abcdefghijklmnop") == "sk-abcde...mnop"


def test_round_robin_stays_fair_across_threads() -> None:
    rotator = KeyRotator()
    threads_count, calls_per_thread = 8, 250
    picks: list[str] = []
    picks_lock = threading.Lock()
    start = threading.Barrier(threads_count)

    def worker() -> None:
        start.wait()
        local = [rotator.select_key(POOL, "round-robin") for _ in range(calls_per_thread)]
        with picks_lock:
            picks.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    total = threads_count * calls_per_thread
    counts = Counter(picks)
    assert sum(counts.values()) == total
    assert set(counts) == set(POOL)
    for key in POOL:
        assert counts[key] in (total // len(POOL), -(-total // len(POOL)))
    assert rotator.state.cursor(POOL) == total % len(POOL)
