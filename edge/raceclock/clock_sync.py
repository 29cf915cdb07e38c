"""
Clock synchronization against the time authority.

Each attempt records local time before (T0) and after (T1) one authority
read. Assuming symmetric latency, the authority's reading corresponds to
local time T0 + RTT/2, so

    offset = authority_ms - (T0 + RTT / 2)

Of all successful attempts, the one with the lowest RTT wins: the shorter
the round trip, the smaller the possible asymmetry error.

If every attempt fails the last known offset is kept (0 before the first
success) and the clock is marked degraded. Sync never raises.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from raceclock.errors import TimeAuthorityError

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ClockSample:
    """One round trip to the time authority."""
    offset_ms: int
    rtt_ms: int


def measure_sample(t0_ms: int, t1_ms: int, authority_ms: int) -> ClockSample:
    """Offset and RTT for one attempt, taking the authority reading at the midpoint."""
    rtt = max(0, t1_ms - t0_ms)
    offset = authority_ms - (t0_ms + rtt // 2)
    return ClockSample(offset_ms=offset, rtt_ms=rtt)


def select_offset(samples: List[ClockSample]) -> Optional[ClockSample]:
    """Lowest-RTT sample; the first one collected wins a tie."""
    if not samples:
        return None
    return min(samples, key=lambda s: s.rtt_ms)


class ClockSynchronizer:
    """
    Owns this client's offset from authority time.

    corrected_now_ms() is the only clock downstream code should read.
    """

    def __init__(
        self,
        fetch_authority_ms: Callable[[], Awaitable[int]],
        attempts: int = 3,
        attempt_delay_s: float = 0.05,
        local_clock_ms: Callable[[], int] = wall_clock_ms,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch_authority_ms
        self.attempts = max(1, attempts)
        self.attempt_delay_s = attempt_delay_s
        self._local_ms = local_clock_ms
        self._monotonic = monotonic

        self._offset_ms = 0
        self._last_sample: Optional[ClockSample] = None
        self._last_sync_monotonic: Optional[float] = None
        self._degraded = False
        self._inflight: Optional[asyncio.Task] = None

    @property
    def offset_ms(self) -> int:
        return self._offset_ms

    @property
    def last_sample(self) -> Optional[ClockSample]:
        return self._last_sample

    @property
    def has_synced(self) -> bool:
        return self._last_sync_monotonic is not None

    @property
    def is_degraded(self) -> bool:
        """True when the last sync failed or no sync has succeeded yet."""
        return self._degraded or not self.has_synced

    def corrected_now_ms(self) -> int:
        """Best estimate of authority time right now."""
        return self._local_ms() + self._offset_ms

    def seconds_since_sync(self) -> Optional[float]:
        if self._last_sync_monotonic is None:
            return None
        return self._monotonic() - self._last_sync_monotonic

    def is_stale(self, threshold_s: float) -> bool:
        """True if there has been no successful sync within threshold_s."""
        age = self.seconds_since_sync()
        return age is None or age > threshold_s

    async def collect_samples(self, attempts: int) -> List[ClockSample]:
        """Run `attempts` round trips; failed attempts are dropped from the pool."""
        samples = []
        for attempt in range(attempts):
            if attempt > 0 and self.attempt_delay_s > 0:
                await asyncio.sleep(self.attempt_delay_s)

            t0 = self._local_ms()
            try:
                authority_ms = await self._fetch()
            except TimeAuthorityError as e:
                logger.debug(f"Clock sync attempt {attempt + 1}/{attempts} failed: {e}")
                continue
            t1 = self._local_ms()

            samples.append(measure_sample(t0, t1, authority_ms))
        return samples

    async def sync(self, attempts: Optional[int] = None) -> int:
        """
        Measure and store the offset. Returns the offset now in effect.

        Calls made while a sync is running share its result.
        """
        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)

        self._inflight = asyncio.ensure_future(self._sync(attempts or self.attempts))
        return await asyncio.shield(self._inflight)

    async def _sync(self, attempts: int) -> int:
        samples = await self.collect_samples(attempts)
        best = select_offset(samples)

        if best is None:
            self._degraded = True
            logger.warning(
                f"Clock sync failed ({attempts} attempts); "
                f"keeping offset {self._offset_ms} ms, display accuracy reduced"
            )
            return self._offset_ms

        self._offset_ms = best.offset_ms
        self._last_sample = best
        self._last_sync_monotonic = self._monotonic()
        self._degraded = False
        logger.debug(
            f"Clock synced: offset={best.offset_ms} ms rtt={best.rtt_ms} ms "
            f"({len(samples)}/{attempts} samples)"
        )
        return self._offset_ms

    async def close(self):
        """Cancel an in-flight sync."""
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            try:
                await self._inflight
            except asyncio.CancelledError:
                pass
        self._inflight = None
