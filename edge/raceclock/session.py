"""
Race clock session: the per-client context that owns every moving part.

    PitwallClient -> ClockSynchronizer (offset)
                  -> RecordSource -> RaceStateCache (snapshot)
                                         |
                  DisplayDriver <--------+--> render(RaceView)
                  AdminCommandIssuer (admin token only)

Usage:
    async with RaceClockSession(config, render) as session:
        ...
        await session.actions.record_lap()
"""
import asyncio
import logging
from typing import Callable, Optional

import httpx

from raceclock.admin import AdminCommandIssuer
from raceclock.api import PitwallClient
from raceclock.clock_sync import ClockSynchronizer
from raceclock.config import ClientConfig
from raceclock.display_driver import DisplayDriver
from raceclock.errors import PermissionDeniedError
from raceclock.models import RaceRecord, RaceView
from raceclock.record_source import RecordSource, build_record_source
from raceclock.state_cache import RaceStateCache

logger = logging.getLogger(__name__)


class RaceActions:
    """Action handles exposed with the read model. Spectators get PermissionDeniedError."""

    def __init__(self, issuer: Optional[AdminCommandIssuer]):
        self._issuer = issuer

    @property
    def enabled(self) -> bool:
        return self._issuer is not None

    def _require(self) -> AdminCommandIssuer:
        if self._issuer is None:
            raise PermissionDeniedError("race control is only available to the admin")
        return self._issuer

    async def start_stop(self) -> RaceRecord:
        return await self._require().start_stop()

    async def record_lap(self) -> RaceRecord:
        return await self._require().record_lap()

    async def reset(self) -> RaceRecord:
        return await self._require().reset_race()


class RaceClockSession:
    """Wires one client together and tears it down cleanly."""

    def __init__(
        self,
        config: ClientConfig,
        render: Callable[[RaceView], None],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        source: Optional[RecordSource] = None,
    ):
        self.config = config
        self.api = PitwallClient(config, transport=transport)
        self.synchronizer = ClockSynchronizer(
            self.api.fetch_server_time_ms,
            attempts=config.sync_attempts,
            attempt_delay_s=config.sync_attempt_delay_s,
        )
        self.cache = RaceStateCache()
        self.driver = DisplayDriver(
            self.cache,
            self.synchronizer,
            render,
            tick_interval_s=config.tick_interval_s,
            resync_staleness_s=config.resync_staleness_s,
            # Compensation is a spectator display aid; the admin's clock stays exact
            compensation_s=0.0 if config.is_admin else config.compensation_s,
            total_laps=config.total_laps,
            target_race_time_s=config.target_race_time_s,
        )
        self.source = source or build_record_source(
            config,
            self.api,
            on_reconnect=lambda: self.driver.request_resync("change feed reconnected"),
        )
        self.issuer = (
            AdminCommandIssuer(self.api, self.cache, self.synchronizer)
            if config.is_admin else None
        )
        self.actions = RaceActions(self.issuer)
        self._source_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Initial sync, then start the record source and the display."""
        offset = await self.synchronizer.sync()
        logger.info(
            f"Race clock session starting ({'admin' if self.config.is_admin else 'spectator'}, "
            f"transport={self.config.transport}, offset={offset} ms)"
        )
        self.driver.start()
        self._source_task = asyncio.ensure_future(self.source.run(self.cache))

    async def wait_loaded(self, timeout_s: float = 10.0) -> bool:
        """Wait until the first record has arrived. Returns False on timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while self.cache.is_loading:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.05)
        return True

    def view(self) -> RaceView:
        """Current frame, computed on demand."""
        return self.driver.compute_view()

    def set_visible(self, visible: bool) -> None:
        self.driver.set_visible(visible)

    async def close(self) -> None:
        """Stop every task and close the HTTP client."""
        if self._source_task is not None and not self._source_task.done():
            self._source_task.cancel()
            try:
                await self._source_task
            except asyncio.CancelledError:
                pass
        self._source_task = None
        await self.driver.close()
        await self.synchronizer.close()
        await self.api.close()
        logger.info("Race clock session closed")

    async def __aenter__(self) -> "RaceClockSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
