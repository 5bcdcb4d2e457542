"""Throttling primitives: cooldown, sliding-window counter, short-lived cache.

All three are synchronous and do no I/O. Check-then-act pairs are atomic
because everything runs on a single asyncio event loop.
"""

from __future__ import annotations

import time
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000


class Cooldown:
    """Minimum interval between successive actions on one resource.

    Args:
        interval_ms: Required gap between actions.
        clock: Millisecond clock, injectable for tests.
    """

    def __init__(self, interval_ms: float, clock: Clock = monotonic_ms) -> None:
        self._interval_ms = interval_ms
        self._clock = clock
        self._last_action: float | None = None

    def can_act(self) -> bool:
        if self._last_action is None:
            return True
        return self._clock() - self._last_action >= self._interval_ms

    def act(self) -> bool:
        """Record an action if eligible.

        Returns:
            True if the action was recorded, False if still cooling down.
        """
        if not self.can_act():
            return False
        self._last_action = self._clock()
        return True

    def remaining(self) -> float:
        """Milliseconds until the next action is allowed (0 when ready)."""
        if self._last_action is None:
            return 0.0
        return max(0.0, self._interval_ms - (self._clock() - self._last_action))

    def reset(self) -> None:
        self._last_action = None


class SlidingWindowCounter:
    """Caps the number of actions inside a trailing time window.

    Args:
        max_count: Maximum actions allowed within the window.
        window_ms: Window length.
        clock: Millisecond clock, injectable for tests.
    """

    def __init__(self, max_count: int, window_ms: float, clock: Clock = monotonic_ms) -> None:
        self._max_count = max_count
        self._window_ms = window_ms
        self._clock = clock
        self._timestamps: list[float] = []

    @property
    def max_count(self) -> int:
        return self._max_count

    def can_act(self) -> bool:
        self._prune()
        return len(self._timestamps) < self._max_count

    def act(self) -> bool:
        if not self.can_act():
            return False
        self._timestamps.append(self._clock())
        return True

    def count(self) -> int:
        self._prune()
        return len(self._timestamps)

    def reset(self) -> None:
        self._timestamps = []

    def _prune(self) -> None:
        now = self._clock()
        self._timestamps = [t for t in self._timestamps if now - t < self._window_ms]


class Cache(Generic[T]):
    """Single value that expires after a freshness threshold."""

    def __init__(self, freshness_ms: float, clock: Clock = monotonic_ms) -> None:
        self._freshness_ms = freshness_ms
        self._clock = clock
        self._value: T | None = None
        self._stored_at = 0.0

    def get(self) -> T | None:
        if self._value is not None and self._clock() - self._stored_at < self._freshness_ms:
            return self._value
        return None

    def set(self, value: T) -> None:
        self._value = value
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._value = None
        self._stored_at = 0.0
