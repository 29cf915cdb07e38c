"""
Admin command issuer: translates race-control actions into record writes.

Every timestamp written comes from the time authority (or, if it is
briefly unreachable, from a synced corrected clock), never from the raw
local clock. Each write is a complete field set for its transition,
computed from one fresh time reading, so no command depends on a stale
local counter.

Commands do not touch the local cache. The new record comes back through
the change feed like it does for every other client. Until it does, the
issuer bases its next command on the newer of the cached snapshot and the
record its own last write returned, so two quick lap presses never build
on the same stale lap list.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from raceclock import calculator
from raceclock.api import PitwallClient
from raceclock.clock_sync import ClockSynchronizer
from raceclock.errors import AdminCommandError, TimeAuthorityError
from raceclock.models import RaceRecord
from raceclock.state_cache import RaceStateCache

logger = logging.getLogger(__name__)


def _updated_at(record: RaceRecord) -> Optional[datetime]:
    """Store timestamp as naive UTC (SQLite hands back naive values)."""
    if not record.updated_at:
        return None
    try:
        stamp = datetime.fromisoformat(record.updated_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone(timezone.utc).replace(tzinfo=None)
    return stamp


def newer_record(a: Optional[RaceRecord], b: Optional[RaceRecord]) -> Optional[RaceRecord]:
    """The more recently stored of two records. `a` wins ties and pairs with no stamps."""
    if a is None or b is None:
        return a or b
    stamp_a, stamp_b = _updated_at(a), _updated_at(b)
    if stamp_b is None:
        return a
    if stamp_a is None:
        return b
    return b if stamp_b > stamp_a else a


class AdminCommandIssuer:
    """Race control for the single privileged client. Commands run one at a time."""

    def __init__(self, api: PitwallClient, cache: RaceStateCache, synchronizer: ClockSynchronizer):
        self.api = api
        self.cache = cache
        self.synchronizer = synchronizer
        self._lock = asyncio.Lock()
        self._last_written: Optional[RaceRecord] = None

    async def _authority_now_ms(self) -> int:
        """Fresh authority time, falling back to the synced clock."""
        try:
            return await self.api.fetch_server_time_ms()
        except TimeAuthorityError as e:
            if self.synchronizer.has_synced:
                logger.warning(f"Time authority unreachable ({e}); using synced clock")
                return self.synchronizer.corrected_now_ms()
            raise AdminCommandError(
                "cannot timestamp command: time authority unreachable and clock never synced"
            ) from e

    def current_record(self) -> Optional[RaceRecord]:
        """Latest known record: the cached snapshot or this issuer's own last write."""
        return newer_record(self.cache.snapshot, self._last_written)

    def _require_record(self) -> RaceRecord:
        record = self.current_record()
        if record is None:
            raise AdminCommandError("race record not loaded yet")
        return record

    async def _write(self, command: str, fields: Dict[str, Any]) -> RaceRecord:
        logger.info(f"Race control: {command} {fields}")
        try:
            record = await self.api.update_race_state(fields)
        except AdminCommandError:
            logger.warning(f"Race control {command} failed")
            raise
        self._last_written = record
        return record

    # ============ Transitions (call with the lock held) ============

    async def _start(self) -> RaceRecord:
        now = await self._authority_now_ms()
        return await self._write("start", {
            "is_running": True,
            "started_at_ms": now,
            "paused_offset_ms": 0,
            "lap_times": [],
        })

    async def _stop(self) -> RaceRecord:
        return await self._write("stop", {
            "is_running": False,
            "started_at_ms": None,
        })

    # ============ Commands ============

    async def start_race(self) -> RaceRecord:
        """
        Full restart: new start time, pause offset and lap history cleared.

        This is not a resume. Time accumulated before a stop is discarded.
        """
        async with self._lock:
            return await self._start()

    async def stop_race(self) -> RaceRecord:
        """Stop the clock. Derived time freezes because nothing recomputes it."""
        async with self._lock:
            return await self._stop()

    async def record_lap(self) -> RaceRecord:
        """Append the lap in progress, quantized to whole seconds at this instant."""
        async with self._lock:
            record = self._require_record()
            if not record.is_running:
                raise AdminCommandError("cannot record a lap while the race is stopped")

            now = self.synchronizer.corrected_now_ms()
            lap = calculator.next_lap_duration(record, now)
            lap_times = list(record.lap_times) + [lap]
            return await self._write("lap", {"lap_times": lap_times})

    async def reset_race(self) -> RaceRecord:
        """Back to a fresh, stopped race."""
        async with self._lock:
            return await self._write("reset", {
                "is_running": False,
                "started_at_ms": None,
                "paused_offset_ms": 0,
                "lap_times": [],
            })

    async def start_stop(self) -> RaceRecord:
        """Start the race if it is stopped, stop it if it is running (start is a full restart)."""
        async with self._lock:
            if self._require_record().is_running:
                return await self._stop()
            return await self._start()
