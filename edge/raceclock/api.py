"""
HTTP client for the Pitwall server.

Wraps one httpx.AsyncClient and translates transport failures into the
race clock error types.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from raceclock.config import ClientConfig
from raceclock.errors import (
    AdminCommandError,
    PermissionDeniedError,
    RecordFetchError,
    TimeAuthorityError,
)
from raceclock.models import RaceRecord

logger = logging.getLogger(__name__)


class PitwallClient:
    """
    Client for the time authority, the race record and its change feed.
    """

    def __init__(self, config: ClientConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._base = config.server_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_s),
            limits=httpx.Limits(max_connections=5),
            transport=transport,
        )

    def _admin_headers(self) -> Dict[str, str]:
        return {
            "X-Admin-Token": self.config.admin_token,
            "Content-Type": "application/json",
        }

    async def fetch_server_time_ms(self) -> int:
        """One time authority read, in epoch milliseconds."""
        try:
            response = await self._client.get(f"{self._base}/api/v1/time")
            response.raise_for_status()
            return int(response.json()["server_time_ms"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            raise TimeAuthorityError(f"time authority unavailable: {e}") from e

    async def fetch_race_state(self) -> RaceRecord:
        """Load the full race record."""
        try:
            response = await self._client.get(f"{self._base}/api/v1/race-state")
            response.raise_for_status()
            return RaceRecord.from_row(response.json())
        except (httpx.HTTPError, AttributeError, TypeError, ValueError) as e:
            raise RecordFetchError(f"race record unavailable: {e}") from e

    async def update_race_state(self, fields: Dict[str, Any]) -> RaceRecord:
        """
        Write a field set to the race record.

        Returns the record as the server stored it. Callers should not apply
        it locally; the change feed delivers it to every client.
        """
        if not self.config.admin_token:
            raise PermissionDeniedError("race control requires an admin token")

        try:
            response = await self._client.patch(
                f"{self._base}/api/v1/race-state",
                json=fields,
                headers=self._admin_headers(),
            )
        except httpx.HTTPError as e:
            raise AdminCommandError(f"race control write failed: {e}") from e

        if response.status_code in (401, 403):
            raise PermissionDeniedError("admin token rejected by server")
        if response.status_code != 200:
            detail = _error_detail(response)
            raise AdminCommandError(f"race control write rejected: HTTP {response.status_code} {detail}")

        try:
            return RaceRecord.from_row(response.json())
        except (AttributeError, TypeError, ValueError) as e:
            raise AdminCommandError(f"race control write returned a malformed record: {e}") from e

    async def stream_race_state(self) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """
        Consume the SSE change feed, yielding (event_type, payload) pairs.

        Returns when the server closes the stream; raises httpx errors on
        connection failure so the caller can reconnect. The server sends a
        heartbeat every keepalive period, so a feed silent for longer than
        feed_idle_timeout_s is treated as a dead (half-open) connection and
        raises RecordFetchError.
        """
        url = f"{self._base}/api/v1/race-state/stream"
        idle_timeout = self.config.feed_idle_timeout_s
        async with self._client.stream(
            "GET",
            url,
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self.config.request_timeout_s, read=idle_timeout),
        ) as response:
            if response.status_code != 200:
                raise RecordFetchError(f"change feed connect failed: HTTP {response.status_code}")

            event_type = None
            data_lines = []
            lines = response.aiter_lines()

            while True:
                try:
                    line = await asyncio.wait_for(lines.__anext__(), timeout=idle_timeout)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as e:
                    raise RecordFetchError(
                        f"change feed idle for {idle_timeout:.0f}s; connection presumed dead"
                    ) from e

                line = line.rstrip("\r")

                if line.startswith(":"):
                    continue  # Comment / keepalive
                if line.startswith("event:"):
                    event_type = line[6:].strip()
                elif line.startswith("data:"):
                    data_lines.append(line[5:].strip())
                elif line == "":
                    if event_type and data_lines:
                        raw = "\n".join(data_lines)
                        try:
                            payload = json.loads(raw)
                        except json.JSONDecodeError:
                            logger.warning(f"Invalid JSON in {event_type} event: {raw[:200]}")
                        else:
                            yield event_type, payload
                    event_type = None
                    data_lines = []

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail", ""))
    except (ValueError, AttributeError):
        return response.text[:200]
