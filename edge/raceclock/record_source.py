"""
Record sources: keep a RaceStateCache current.

Two interchangeable transports deliver the same thing, a sequence of full
race record snapshots:

    StreamRecordSource  - catch-up fetch, then the SSE change feed
    PollingRecordSource - fetch the record on a fixed cadence

Both run until cancelled and never raise on network trouble; they flag
the cache disconnected and keep trying.
"""
import asyncio
import logging
from typing import Callable, Optional

import httpx

from raceclock.api import PitwallClient
from raceclock.config import ClientConfig
from raceclock.errors import RecordFetchError
from raceclock.models import RaceRecord
from raceclock.state_cache import RaceStateCache

logger = logging.getLogger(__name__)

# Feed events that carry a full race record
RECORD_EVENTS = ("snapshot", "race_state")


class RecordSource:
    """Base class for transports feeding the cache."""

    async def run(self, cache: RaceStateCache) -> None:
        raise NotImplementedError

    async def fetch_once(self, api: PitwallClient, cache: RaceStateCache) -> bool:
        """One catch-up fetch into the cache. Returns True on success."""
        try:
            record = await api.fetch_race_state()
        except RecordFetchError as e:
            cache.mark_disconnected(str(e))
            return False
        cache.replace(record)
        cache.mark_connected()
        return True


class StreamRecordSource(RecordSource):
    """
    SSE-driven source.

    Every (re)connect starts with a fetch so an update that happened while
    the feed was down is not missed, then applies feed events in arrival
    order. Drops back off exponentially before reconnecting.
    """

    def __init__(
        self,
        api: PitwallClient,
        reconnect_base_s: float = 1.0,
        reconnect_max_s: float = 30.0,
        on_reconnect: Optional[Callable[[], None]] = None,
    ):
        self.api = api
        self.reconnect_base_s = reconnect_base_s
        self.reconnect_max_s = reconnect_max_s
        self.on_reconnect = on_reconnect
        self._retry_delay = reconnect_base_s
        self.connections = 0

    @property
    def retry_delay(self) -> float:
        """Current reconnect delay in seconds."""
        return self._retry_delay

    def _increase_retry_delay(self):
        """Exponential backoff for reconnects."""
        self._retry_delay = min(self._retry_delay * 2, self.reconnect_max_s)

    async def run(self, cache: RaceStateCache) -> None:
        while True:
            try:
                await self.fetch_once(self.api, cache)
                await self._consume(cache)
                cache.mark_disconnected("change feed closed by server")
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, RecordFetchError) as e:
                cache.mark_disconnected(f"change feed error: {e}")
                logger.warning(f"Change feed connection failed: {e}")
            except Exception as e:
                cache.mark_disconnected(f"change feed error: {e}")
                logger.warning(f"Change feed error: {e}")

            logger.info(f"Reconnecting to change feed in {self._retry_delay:.1f}s")
            await asyncio.sleep(self._retry_delay)
            self._increase_retry_delay()

    async def _consume(self, cache: RaceStateCache) -> None:
        async for event_type, payload in self.api.stream_race_state():
            if event_type == "connected":
                self.connections += 1
                self._retry_delay = self.reconnect_base_s
                cache.mark_connected()
                if self.connections > 1 and self.on_reconnect is not None:
                    self.on_reconnect()
                logger.info("Connected to change feed")
            elif event_type in RECORD_EVENTS:
                cache.replace(RaceRecord.from_row(payload))
                cache.mark_connected()
            elif event_type == "heartbeat":
                cache.mark_connected()


class PollingRecordSource(RecordSource):
    """Fetches the record every poll_interval_s. Failures wait for the next poll."""

    def __init__(self, api: PitwallClient, poll_interval_s: float = 1.0):
        self.api = api
        self.poll_interval_s = poll_interval_s

    async def run(self, cache: RaceStateCache) -> None:
        while True:
            ok = await self.fetch_once(self.api, cache)
            if not ok:
                logger.debug("Race record poll failed; retrying at normal cadence")
            await asyncio.sleep(self.poll_interval_s)


def build_record_source(
    config: ClientConfig,
    api: PitwallClient,
    on_reconnect: Optional[Callable[[], None]] = None,
) -> RecordSource:
    """Pick the transport named in the configuration."""
    if config.transport == "poll":
        return PollingRecordSource(api, poll_interval_s=config.poll_interval_s)
    if config.transport != "sse":
        logger.warning(f"Unknown transport '{config.transport}', using sse")
    return StreamRecordSource(
        api,
        reconnect_base_s=config.reconnect_base_s,
        reconnect_max_s=config.reconnect_max_s,
        on_reconnect=on_reconnect,
    )
