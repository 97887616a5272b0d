"""
Tests for the sliding-window rate gate and the listener registry.
"""

import pytest

from phasecrawl.errors import TimingAnomaly
from phasecrawl.events import ListenerSet
from phasecrawl.rate_gate import RateGate


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    async def advancing_sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds * 1000

    async def frozen_sleep(self, seconds):
        self.sleeps.append(seconds)


# =============================================================================
# RATE GATE
# =============================================================================

class TestRateGate:
    """Admission, waiting and status reporting."""

    @pytest.mark.asyncio
    async def test_admits_up_to_capacity_without_waiting(self):
        clock = FakeClock()
        gate = RateGate(3, 1000, clock=clock, sleep=clock.advancing_sleep)

        for _ in range(3):
            await gate.admit()

        assert clock.sleeps == []
        status = gate.status()
        assert status["activeRequests"] == 3
        assert status["availableSlots"] == 0
        assert status["isLimited"] is True

    @pytest.mark.asyncio
    async def test_waits_for_window_to_expire(self):
        clock = FakeClock()
        gate = RateGate(2, 1000, clock=clock, sleep=clock.advancing_sleep)

        await gate.admit()
        await gate.admit()
        await gate.admit()

        assert clock.sleeps == [1.0]
        assert clock.now == 1000
        assert gate.status()["activeRequests"] == 1

    @pytest.mark.asyncio
    async def test_never_admits_more_than_max_in_window(self):
        clock = FakeClock()
        gate = RateGate(2, 1000, clock=clock, sleep=clock.advancing_sleep)
        admitted_at = []

        for _ in range(6):
            await gate.admit()
            admitted_at.append(clock.now)

        for t in admitted_at:
            in_window = [a for a in admitted_at if t <= a < t + 1000]
            assert len(in_window) <= 2

    @pytest.mark.asyncio
    async def test_frozen_clock_raises_timing_anomaly(self):
        clock = FakeClock()
        gate = RateGate(1, 1000, clock=clock, sleep=clock.frozen_sleep)
        await gate.admit()

        with pytest.raises(TimingAnomaly) as exc_info:
            await gate.admit()

        assert exc_info.value.depth == RateGate.MAX_RECURSION_DEPTH
        assert len(clock.sleeps) == RateGate.MAX_RECURSION_DEPTH

    def test_interval_and_capacity_floors(self):
        gate = RateGate(0, 10)
        assert gate.max_requests == 10
        assert gate.interval == 1000

    @pytest.mark.asyncio
    async def test_time_until_available(self):
        clock = FakeClock()
        gate = RateGate(1, 2000, clock=clock, sleep=clock.advancing_sleep)
        assert gate.time_until_available() == 0

        await gate.admit()
        clock.now = 500
        assert gate.time_until_available() == 1500

    @pytest.mark.asyncio
    async def test_reset_clears_window(self):
        clock = FakeClock()
        gate = RateGate(1, 1000, clock=clock, sleep=clock.advancing_sleep)
        await gate.admit()

        gate.reset()

        assert gate.status()["availableSlots"] == 1

    def test_from_options_accepts_both_spellings(self):
        assert RateGate.from_options({"maxRequests": 4}).max_requests == 4
        assert RateGate.from_options({"max_requests": 5, "interval": 3000}).interval == 3000


# =============================================================================
# LISTENERS
# =============================================================================

class TestListenerSet:

    def test_emit_reaches_listeners_in_order(self):
        events = ListenerSet()
        seen = []
        events.on("phaseStart", lambda p: seen.append(("a", p["phase"])))
        events.on("phaseStart", lambda p: seen.append(("b", p["phase"])))

        events.emit("phaseStart", {"phase": 1})

        assert seen == [("a", 1), ("b", 1)]

    def test_off_removes_listener(self):
        events = ListenerSet()
        listener = events.on("x", lambda p: None)
        events.off("x", listener)
        assert events.count("x") == 0

    def test_failing_listener_does_not_stop_others(self):
        events = ListenerSet()
        seen = []

        def broken(payload):
            raise RuntimeError("boom")

        events.on("x", broken)
        events.on("x", seen.append)

        events.emit("x")

        assert seen == [{}]
