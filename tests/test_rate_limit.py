"""Tests for the cooldown, sliding-window counter and cache primitives."""

from __future__ import annotations

from bobi.core.rate_limit import Cache, Cooldown, SlidingWindowCounter


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------


class TestCooldown:
    def test_first_action_allowed(self) -> None:
        cooldown = Cooldown(800, FakeClock())
        assert cooldown.can_act()
        assert cooldown.act()

    def test_blocks_within_interval(self) -> None:
        clock = FakeClock()
        cooldown = Cooldown(800, clock)
        cooldown.act()
        clock.advance(799)
        assert not cooldown.can_act()
        assert not cooldown.act()

    def test_allows_after_interval(self) -> None:
        clock = FakeClock()
        cooldown = Cooldown(800, clock)
        cooldown.act()
        clock.advance(800)
        assert cooldown.act()

    def test_blocked_act_does_not_extend_cooldown(self) -> None:
        clock = FakeClock()
        cooldown = Cooldown(800, clock)
        cooldown.act()
        clock.advance(500)
        cooldown.act()
        clock.advance(300)
        assert cooldown.can_act()

    def test_remaining(self) -> None:
        clock = FakeClock()
        cooldown = Cooldown(800, clock)
        assert cooldown.remaining() == 0
        cooldown.act()
        clock.advance(300)
        assert cooldown.remaining() == 500
        clock.advance(1000)
        assert cooldown.remaining() == 0

    def test_reset(self) -> None:
        cooldown = Cooldown(800, FakeClock())
        cooldown.act()
        cooldown.reset()
        assert cooldown.can_act()


# ---------------------------------------------------------------------------
# SlidingWindowCounter
# ---------------------------------------------------------------------------


class TestSlidingWindowCounter:
    def test_allows_up_to_max(self) -> None:
        counter = SlidingWindowCounter(3, 10000, FakeClock())
        assert counter.act()
        assert counter.act()
        assert counter.act()
        assert not counter.act()
        assert counter.count() == 3

    def test_fourth_call_succeeds_after_window(self) -> None:
        clock = FakeClock()
        counter = SlidingWindowCounter(3, 10000, clock)
        for _ in range(3):
            counter.act()
            clock.advance(100)
        assert not counter.can_act()

        # 10s after the first call its slot frees up
        clock.now = 1000 + 10000
        assert counter.act()

    def test_window_slides_one_slot_at_a_time(self) -> None:
        clock = FakeClock()
        counter = SlidingWindowCounter(2, 1000, clock)
        counter.act()
        clock.advance(600)
        counter.act()
        clock.advance(400)
        assert counter.count() == 1
        assert counter.act()
        assert not counter.act()

    def test_max_count_property(self) -> None:
        assert SlidingWindowCounter(5, 1000).max_count == 5

    def test_reset(self) -> None:
        counter = SlidingWindowCounter(1, 10000, FakeClock())
        counter.act()
        counter.reset()
        assert counter.can_act()


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestCache:
    def test_empty(self) -> None:
        assert Cache(1000, FakeClock()).get() is None

    def test_fresh_value_returned(self) -> None:
        clock = FakeClock()
        cache: Cache[str] = Cache(1000, clock)
        cache.set("here")
        clock.advance(999)
        assert cache.get() == "here"

    def test_expires(self) -> None:
        clock = FakeClock()
        cache: Cache[str] = Cache(1000, clock)
        cache.set("here")
        clock.advance(1000)
        assert cache.get() is None

    def test_invalidate(self) -> None:
        cache: Cache[int] = Cache(1000, FakeClock())
        cache.set(1)
        cache.invalidate()
        assert cache.get() is None
