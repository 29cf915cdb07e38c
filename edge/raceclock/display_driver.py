"""
Display driver: decides when to recompute the race clock and push a frame.

State Machine:
    IDLE    (race not running) - one frame per record change, no timer
    TICKING (race running)     - frame every tick_interval_s from one owned task

    IDLE    -> (record with is_running=true)  -> TICKING
    TICKING -> (record with is_running=false) -> IDLE
    *       -> (any record change)            -> immediate frame

The tick task is cancelled on every transition, while the display is
hidden, and on close(); no timer outlives the driver.

Resync triggers:
    - start/stop boundary (is_running or started_at_ms changed)
    - display becomes visible again
    - change feed reconnects
    - last successful sync older than resync_staleness_s (checked per tick)
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Callable, List, Optional

from raceclock import calculator
from raceclock.clock_sync import ClockSynchronizer
from raceclock.models import DEFAULT_TOTAL_RACE_TIME_S, RaceRecord, RaceView
from raceclock.state_cache import RaceStateCache

logger = logging.getLogger(__name__)


class DisplayState(str, Enum):
    """Display driver states."""
    IDLE = "IDLE"
    TICKING = "TICKING"


RenderCallback = Callable[[RaceView], None]


class DisplayDriver:
    """Pushes RaceView frames to a render callback."""

    def __init__(
        self,
        cache: RaceStateCache,
        synchronizer: ClockSynchronizer,
        render: RenderCallback,
        tick_interval_s: float = 0.1,
        resync_staleness_s: float = 20.0,
        compensation_s: float = 0.0,
        total_laps: int = 11,
        target_race_time_s: int = 34 * 60,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.synchronizer = synchronizer
        self.render = render
        self.tick_interval_s = tick_interval_s
        self.resync_staleness_s = resync_staleness_s
        self.compensation_ms = int(compensation_s * 1000)
        self.target_lap_s = calculator.target_lap_seconds(target_race_time_s, total_laps)
        self._monotonic = monotonic
        self._anomalies = calculator.AnomalyThrottle()

        self.state = DisplayState.IDLE
        self._visible = True
        self._tick_task: Optional[asyncio.Task] = None
        self._resync_task: Optional[asyncio.Task] = None
        self._last_view: Optional[RaceView] = None
        self._last_resync_attempt: Optional[float] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self.frames_pushed = 0

    # ============ Lifecycle ============

    def start(self) -> None:
        """Attach to the cache and show the current snapshot."""
        self._unsubscribers.append(self.cache.on_update(self._on_record))
        self._unsubscribers.append(self.cache.on_connectivity(self._on_connectivity))
        self._apply_state(self.cache.snapshot)
        self.push()

    async def close(self) -> None:
        """Detach and cancel every task this driver owns."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        await self._cancel_tick()
        if self._resync_task is not None and not self._resync_task.done():
            self._resync_task.cancel()
            try:
                await self._resync_task
            except asyncio.CancelledError:
                pass
        self._resync_task = None
        self.state = DisplayState.IDLE

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def is_ticking(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def set_visible(self, visible: bool) -> None:
        """Hidden displays do no periodic work; regaining visibility resyncs."""
        if visible == self._visible:
            return
        self._visible = visible
        if not visible:
            self._stop_tick()
            logger.debug("Display hidden; ticking paused")
            return

        self._apply_state(self.cache.snapshot)
        self.push(force=True)
        self.request_resync("visibility regained")

    # ============ Frames ============

    def compute_view(self) -> RaceView:
        """Derive one frame from the current snapshot and corrected time."""
        record = self.cache.snapshot
        if record is None:
            return RaceView(
                time_left_seconds=DEFAULT_TOTAL_RACE_TIME_S,
                is_running=False,
                current_lap=0,
                lap_times=(),
                current_lap_elapsed_seconds=0,
                total_race_time_seconds=DEFAULT_TOTAL_RACE_TIME_S,
                is_loading=True,
                is_connected=self.cache.is_connected,
                clock_degraded=self.synchronizer.is_degraded,
            )

        now = self.synchronizer.corrected_now_ms() + self.compensation_ms
        time_left = calculator.time_left_seconds(record, now, self._anomalies)
        return RaceView(
            time_left_seconds=time_left,
            is_running=record.is_running,
            current_lap=calculator.current_lap_number(record),
            lap_times=record.lap_times,
            current_lap_elapsed_seconds=calculator.current_lap_elapsed_seconds(record, now, self._anomalies),
            total_race_time_seconds=record.total_race_time_s,
            is_loading=False,
            is_connected=self.cache.is_connected,
            clock_degraded=self.synchronizer.is_degraded,
            is_low_time=calculator.is_low_time(time_left, record.is_running),
            is_critical_time=calculator.is_critical_time(time_left, record.is_running),
            best_lap_seconds=calculator.best_lap(record.lap_times),
            lap_deltas=tuple(calculator.cumulative_deltas(record.lap_times, self.target_lap_s)),
        )

    def push(self, force: bool = False) -> RaceView:
        """Compute a frame and render it unless it matches the last one."""
        view = self.compute_view()
        if not force and view == self._last_view:
            return view
        self._last_view = view
        self.frames_pushed += 1
        try:
            self.render(view)
        except Exception:
            logger.exception("Render callback failed")
        return view

    @property
    def last_view(self) -> Optional[RaceView]:
        return self._last_view

    # ============ Resync ============

    def request_resync(self, reason: str) -> None:
        """Start a background clock sync unless one is already running."""
        if self._resync_task is not None and not self._resync_task.done():
            return
        logger.debug(f"Clock resync requested: {reason}")
        self._last_resync_attempt = self._monotonic()
        self._resync_task = asyncio.ensure_future(self._resync())

    def resync_due(self) -> bool:
        """Offset is stale and no attempt was made within the staleness window."""
        if not self.synchronizer.is_stale(self.resync_staleness_s):
            return False
        if self._last_resync_attempt is None:
            return True
        return self._monotonic() - self._last_resync_attempt > self.resync_staleness_s

    async def _resync(self) -> None:
        await self.synchronizer.sync()
        self.push()

    # ============ State transitions ============

    def _on_record(self, previous: Optional[RaceRecord], current: RaceRecord) -> None:
        self._apply_state(current)
        self.push()

        if previous is not None and (
            previous.is_running != current.is_running
            or previous.started_at_ms != current.started_at_ms
        ):
            self.request_resync("race start/stop boundary")

    def _on_connectivity(self, connected: bool) -> None:
        self.push()

    def _apply_state(self, record: Optional[RaceRecord]) -> None:
        target = DisplayState.TICKING if record is not None and record.is_running else DisplayState.IDLE
        if target != self.state:
            logger.info(f"Display {self.state.value} -> {target.value}")
            self.state = target
            self._stop_tick()

        if self.state == DisplayState.TICKING and self._visible and not self.is_ticking:
            self._tick_task = asyncio.ensure_future(self._tick_loop())

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval_s)
            self.push()
            if self.resync_due():
                self.request_resync("offset stale")

    def _stop_tick(self) -> None:
        if self._tick_task is not None and not self._tick_task.done():
            self._tick_task.cancel()
        self._tick_task = None

    async def _cancel_tick(self) -> None:
        task = self._tick_task
        self._stop_tick()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
