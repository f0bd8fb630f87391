"""
Sender gating for inbound messages.

Decides whether a message from a given address should be surfaced, using
an allowlist, a blocklist and a per-sender rate counter. All state is in
memory and lives as long as the gate instance; construct one per process
and pass it to whatever needs it.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

from walletchat_runtime.identity import normalize_address
from walletchat_runtime.types import SenderWindow, SpamGateConfig

logger = logging.getLogger(__name__)


class SpamGate:
    """Allow/block lists plus a fixed-window rate limit per sender.

    Precedence: allowlisted senders are never blocked, blocklisted senders
    always are, everyone else may send ``max_messages`` per window. A
    sender's window opens on their first message and resets once
    ``window_seconds`` have passed.
    """

    def __init__(
        self,
        config: SpamGateConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or SpamGateConfig()
        self._clock = clock
        self._windows: dict[str, SenderWindow] = {}
        self._blocked: set[str] = set()
        self._allowed: set[str] = set()
        self._lock = threading.Lock()

    @property
    def max_messages(self) -> int:
        return self._config.max_messages

    @property
    def window_seconds(self) -> float:
        return self._config.window_seconds

    def should_block(self, sender: str) -> bool:
        """Record a message from ``sender`` and report whether to drop it."""
        addr = normalize_address(sender)

        if addr in self._allowed:
            return False

        if addr in self._blocked:
            return True

        return self._is_rate_limited(addr)

    def _is_rate_limited(self, addr: str) -> bool:
        with self._lock:
            now = self._clock()
            window = self._windows.get(addr)

            if window is None or now > window.reset_at:
                self._windows[addr] = SenderWindow(
                    count=1, reset_at=now + self._config.window_seconds
                )
                return False

            window.count += 1
            limited = window.count > self._config.max_messages

        if limited:
            logger.warning("Rate limit exceeded for %s", addr)
        return limited

    def get_remaining(self, sender: str) -> int | float:
        """Messages ``sender`` may still send in the current window.

        ``math.inf`` for allowlisted senders, ``0`` for blocked ones.
        """
        addr = normalize_address(sender)

        if addr in self._allowed:
            return math.inf

        if addr in self._blocked:
            return 0

        with self._lock:
            window = self._windows.get(addr)
            if window is None or self._clock() > window.reset_at:
                return self._config.max_messages
            return max(0, self._config.max_messages - window.count)

    # -- List management ----------------------------------------------------

    def block(self, address: str) -> None:
        self._blocked.add(normalize_address(address))
        logger.info("Blocked address: %s", address)

    def unblock(self, address: str) -> None:
        self._blocked.discard(normalize_address(address))
        logger.info("Unblocked address: %s", address)

    def allow(self, address: str) -> None:
        """Add to the allowlist. Existing blocklist membership is kept."""
        self._allowed.add(normalize_address(address))
        logger.info("Added to allowlist: %s", address)

    def disallow(self, address: str) -> None:
        self._allowed.discard(normalize_address(address))
        logger.info("Removed from allowlist: %s", address)

    def is_blocked(self, address: str) -> bool:
        return normalize_address(address) in self._blocked

    def is_allowed(self, address: str) -> bool:
        return normalize_address(address) in self._allowed

    def clear_rate_limits(self) -> None:
        """Drop every rate counter. Block and allow lists are untouched."""
        with self._lock:
            self._windows.clear()
        logger.info("Cleared all rate limit data")
