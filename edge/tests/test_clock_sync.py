"""
Clock synchronizer tests.

Tests for:
1. Offset math for one round trip
2. Lowest-RTT sample selection
3. Failure handling (partial and total)
4. Staleness and coalesced syncs

Run with: pytest tests/test_clock_sync.py -v
"""
import asyncio
import pytest

from raceclock.clock_sync import ClockSample, ClockSynchronizer, measure_sample, select_offset
from raceclock.errors import TimeAuthorityError


def _scripted_fetch(fake_clock, script):
    """
    Fetch that plays back (rtt_ms, offset_ms) steps: advances the fake clock
    by the RTT and reports authority time at the round-trip midpoint.
    A TimeAuthorityError entry fails that attempt.
    """
    steps = list(script)

    async def fetch():
        step = steps.pop(0)
        if isinstance(step, Exception):
            raise step
        rtt, offset = step
        t0 = fake_clock.now_ms
        fake_clock.advance(rtt)
        return t0 + rtt // 2 + offset

    return fetch


# ============================================
# Test: Sample Math
# ============================================

class TestSampleMath:
    """offset = authority - (T0 + RTT/2)"""

    def test_symmetric_round_trip(self):
        sample = measure_sample(t0_ms=10_000, t1_ms=10_040, authority_ms=10_025)
        assert sample == ClockSample(offset_ms=5, rtt_ms=40)

    def test_negative_offset(self):
        sample = measure_sample(t0_ms=10_000, t1_ms=10_100, authority_ms=9_000)
        assert sample.offset_ms == -1_050
        assert sample.rtt_ms == 100

    def test_lowest_rtt_wins(self):
        samples = [
            ClockSample(offset_ms=5, rtt_ms=40),
            ClockSample(offset_ms=50, rtt_ms=120),
            ClockSample(offset_ms=8, rtt_ms=35),
        ]
        assert select_offset(samples) == ClockSample(offset_ms=8, rtt_ms=35)

    def test_tie_keeps_first_sample(self):
        samples = [ClockSample(offset_ms=3, rtt_ms=20), ClockSample(offset_ms=9, rtt_ms=20)]
        assert select_offset(samples).offset_ms == 3

    def test_no_samples(self):
        assert select_offset([]) is None


# ============================================
# Test: Sync
# ============================================

class TestSync:
    """ClockSynchronizer.sync()"""

    def _sync(self, fake_clock, script, attempts=3):
        return ClockSynchronizer(
            _scripted_fetch(fake_clock, script),
            attempts=attempts,
            attempt_delay_s=0,
            local_clock_ms=fake_clock.wall,
            monotonic=fake_clock.monotonic,
        )

    @pytest.mark.asyncio
    async def test_selects_lowest_rtt_offset(self, fake_clock):
        sync = self._sync(fake_clock, [(40, 5), (120, 50), (35, 8)])

        offset = await sync.sync()

        assert offset == 8
        assert sync.offset_ms == 8
        assert sync.last_sample.rtt_ms == 35
        assert sync.has_synced
        assert not sync.is_degraded

    @pytest.mark.asyncio
    async def test_corrected_now_applies_offset(self, fake_clock):
        sync = self._sync(fake_clock, [(20, 250)], attempts=1)
        await sync.sync()

        assert sync.corrected_now_ms() == fake_clock.now_ms + 250

    @pytest.mark.asyncio
    async def test_failed_attempts_are_excluded(self, fake_clock):
        sync = self._sync(fake_clock, [
            TimeAuthorityError("timeout"),
            (60, 12),
            TimeAuthorityError("502"),
        ])

        assert await sync.sync() == 12
        assert not sync.is_degraded

    @pytest.mark.asyncio
    async def test_total_failure_defaults_to_zero(self, fake_clock):
        sync = self._sync(fake_clock, [TimeAuthorityError("down")] * 3)

        offset = await sync.sync()

        assert offset == 0
        assert sync.is_degraded
        assert not sync.has_synced
        assert sync.corrected_now_ms() == fake_clock.now_ms

    @pytest.mark.asyncio
    async def test_total_failure_keeps_last_offset(self, fake_clock):
        sync = self._sync(fake_clock, [(30, 40), TimeAuthorityError("down")], attempts=1)
        await sync.sync()

        offset = await sync.sync()

        assert offset == 40
        assert sync.is_degraded

    @pytest.mark.asyncio
    async def test_unsynced_clock_is_degraded(self, fake_clock):
        sync = self._sync(fake_clock, [])
        assert sync.is_degraded
        assert sync.is_stale(20)


class TestStaleness:
    """Offset age tracking."""

    @pytest.mark.asyncio
    async def test_stale_after_threshold(self, fake_clock):
        sync = ClockSynchronizer(
            _scripted_fetch(fake_clock, [(10, 0)]),
            attempts=1,
            local_clock_ms=fake_clock.wall,
            monotonic=fake_clock.monotonic,
        )
        await sync.sync()
        assert not sync.is_stale(20)

        fake_clock.advance(21_000)
        assert sync.is_stale(20)
        assert sync.seconds_since_sync() == pytest.approx(21.0)


class TestCoalescing:
    """Concurrent sync() calls share one round of sampling."""

    @pytest.mark.asyncio
    async def test_concurrent_syncs_share_one_run(self):
        calls = 0
        release = asyncio.Event()

        async def fetch():
            nonlocal calls
            calls += 1
            await release.wait()
            return 5_000

        sync = ClockSynchronizer(fetch, attempts=1, local_clock_ms=lambda: 5_000)

        first = asyncio.ensure_future(sync.sync())
        second = asyncio.ensure_future(sync.sync())
        await asyncio.sleep(0)
        release.set()

        assert await first == 0
        assert await second == 0
        assert calls == 1

    @pytest.mark.asyncio
    async def test_close_cancels_inflight(self):
        async def fetch():
            await asyncio.sleep(10)
            return 0

        sync = ClockSynchronizer(fetch, attempts=1)
        task = asyncio.ensure_future(sync.sync())
        await asyncio.sleep(0)

        await sync.close()

        with pytest.raises(asyncio.CancelledError):
            await task
