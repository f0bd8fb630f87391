"""
Unit tests for the spam gate: precedence, rate windows and list management.

A fake clock drives window expiry so no test sleeps.
"""

from __future__ import annotations

import math
import threading

from walletchat_runtime.spam_gate import SpamGate
from walletchat_runtime.types import SpamGateConfig


SENDER = "0x" + "ab" * 20


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_gate(**config) -> tuple[SpamGate, FakeClock]:
    clock = FakeClock()
    return SpamGate(SpamGateConfig(**config), clock=clock), clock


# ============================================================
#  Precedence
# ============================================================


def test_allow_overrides_block() -> None:
    """An allowlisted sender is never blocked, even when also blocklisted."""
    gate, _ = make_gate()
    gate.allow(SENDER)
    gate.block(SENDER)

    assert gate.is_blocked(SENDER)
    assert gate.is_allowed(SENDER)
    assert gate.should_block(SENDER) is False


def test_allow_overrides_rate_limit() -> None:
    """Allowlisted senders bypass the rate counter entirely."""
    gate, _ = make_gate(max_messages=2)
    gate.allow(SENDER)

    assert not any(gate.should_block(SENDER) for _ in range(10))
    assert gate.get_remaining(SENDER) == math.inf


def test_blocked_sender_is_blocked() -> None:
    """A blocklisted sender is blocked from the first message."""
    gate, _ = make_gate()
    gate.block(SENDER)

    assert gate.should_block(SENDER) is True
    assert gate.get_remaining(SENDER) == 0


def test_disallow_restores_block() -> None:
    """Removing an allowlist entry lets an existing block apply again."""
    gate, _ = make_gate()
    gate.allow(SENDER)
    gate.block(SENDER)
    gate.disallow(SENDER)

    assert gate.should_block(SENDER) is True


# ============================================================
#  Rate limiting
# ============================================================


def test_limit_plus_one_is_blocked() -> None:
    """50 messages pass inside a window and the 51st is blocked."""
    gate, _ = make_gate()

    results = [gate.should_block(SENDER) for _ in range(50)]
    assert results == [False] * 50
    assert gate.should_block(SENDER) is True


def test_window_expiry_resets_counter() -> None:
    """After the window elapses the next message starts a fresh count of 1."""
    gate, clock = make_gate(max_messages=3, window_seconds=60)
    for _ in range(4):
        gate.should_block(SENDER)
    assert gate.should_block(SENDER) is True

    clock.now += 61
    assert gate.should_block(SENDER) is False
    assert gate.get_remaining(SENDER) == 2


def test_window_boundary_is_inclusive() -> None:
    """At exactly the reset time the window is still active."""
    gate, clock = make_gate(max_messages=1, window_seconds=60)
    gate.should_block(SENDER)

    clock.now += 60
    assert gate.should_block(SENDER) is True


def test_get_remaining_decreases_then_resets() -> None:
    """Remaining count never increases within a window and resets after it."""
    gate, clock = make_gate(max_messages=5, window_seconds=10)
    assert gate.get_remaining(SENDER) == 5

    seen = []
    for _ in range(7):
        gate.should_block(SENDER)
        seen.append(gate.get_remaining(SENDER))
    assert seen == [4, 3, 2, 1, 0, 0, 0]

    clock.now += 11
    assert gate.get_remaining(SENDER) == 5


def test_senders_have_independent_counters() -> None:
    """Exhausting one sender's budget doesn't affect another sender."""
    gate, _ = make_gate(max_messages=1)
    other = "0x" + "cd" * 20
    gate.should_block(SENDER)
    assert gate.should_block(SENDER) is True

    assert gate.should_block(other) is False


def test_address_case_shares_one_counter() -> None:
    """Mixed-case and lowercase forms of an address share one counter."""
    gate, _ = make_gate(max_messages=2)
    upper = "0x" + "AB" * 20

    assert gate.should_block(upper) is False
    assert gate.should_block(SENDER) is False
    assert gate.should_block(upper) is True
    assert gate.should_block(SENDER) is True


def test_clear_rate_limits_keeps_lists() -> None:
    """Clearing counters leaves the block and allow lists as they were."""
    gate, _ = make_gate(max_messages=1)
    blocked = "0x" + "01" * 20
    gate.block(blocked)
    gate.should_block(SENDER)
    gate.should_block(SENDER)

    gate.clear_rate_limits()

    assert gate.should_block(SENDER) is False
    assert gate.should_block(blocked) is True


# ============================================================
#  List management
# ============================================================


def test_block_is_idempotent() -> None:
    """Blocking twice then unblocking once fully unblocks."""
    gate, _ = make_gate()
    gate.block(SENDER)
    gate.block(SENDER)
    gate.unblock(SENDER)

    assert gate.is_blocked(SENDER) is False


def test_unblock_unknown_is_noop() -> None:
    """Unblocking or disallowing a never-listed address changes nothing."""
    gate, _ = make_gate()
    gate.unblock(SENDER)
    gate.disallow(SENDER)

    assert not gate.is_blocked(SENDER)
    assert not gate.is_allowed(SENDER)
    assert gate.should_block(SENDER) is False


def test_malformed_sender_never_raises() -> None:
    """Non-address input is normalised, not rejected."""
    gate, _ = make_gate()

    assert gate.should_block("  Not-An-Address ") is False
    assert gate.should_block(None) is False  # type: ignore[arg-type]
    gate.block("NOT-AN-ADDRESS")
    assert gate.should_block("not-an-address") is True


def test_concurrent_counting_is_exact() -> None:
    """Threads hammering one sender never lose or double an increment."""
    gate, _ = make_gate(max_messages=100)
    threads, calls = 8, 25
    barrier = threading.Barrier(threads)
    results: list[bool] = []
    results_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        local = [gate.should_block(SENDER) for _ in range(calls)]
        with results_lock:
            results.extend(local)

    pool = [threading.Thread(target=worker) for _ in range(threads)]
    for t in pool:
        t.start()
    for t in pool:
        t.join()

    assert len(results) == threads * calls
    assert results.count(False) == 100
    assert gate._windows[SENDER].count == threads * calls
    assert gate.get_remaining(SENDER) == 0


def test_default_config() -> None:
    """Defaults are a one-hour window and 50 messages."""
    gate = SpamGate()
    assert gate.window_seconds == 3600
    assert gate.max_messages == 50
