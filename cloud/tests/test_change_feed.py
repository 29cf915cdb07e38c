"""
Change feed tests: Redis publish/subscribe helpers and the SSE generator.

Tests for:
1. Sequence numbering and full-row publish format
2. Event order on connect: connected, snapshot, then published rows
3. Heartbeats while idle
4. Keepalive resends the row when a publish was lost

Run with: pytest tests/test_change_feed.py -v
"""
import json
import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

from pitwall import redis_client
from pitwall.models import RaceState
from pitwall.routes import stream
from pitwall.services import race_store

RACE_ID = "00000000-0000-0000-0000-000000000001"


# ============================================
# Test: Redis Helpers
# ============================================

class TestPublish:
    """Publishing a committed row."""

    @pytest.mark.asyncio
    async def test_incr_feed_seq_sets_ttl(self):
        with patch.object(redis_client, "get_redis") as mock_get_redis:
            mock_redis = AsyncMock()
            mock_redis.incr.return_value = 7
            mock_get_redis.return_value = mock_redis

            seq = await redis_client.incr_feed_seq(RACE_ID)

            assert seq == 7
            mock_redis.incr.assert_called_once_with(f"race_state_seq:{RACE_ID}")
            mock_redis.expire.assert_called_once_with(
                f"race_state_seq:{RACE_ID}", redis_client.SEQ_TTL_S
            )

    @pytest.mark.asyncio
    async def test_publish_sends_full_row_with_seq(self):
        row = {"id": RACE_ID, "is_running": False, "lap_times": [180]}
        with patch.object(redis_client, "get_redis") as mock_get_redis:
            mock_redis = AsyncMock()
            mock_redis.incr.return_value = 3
            mock_get_redis.return_value = mock_redis

            seq = await redis_client.publish_race_state(RACE_ID, row)

            assert seq == 3
            channel, message = mock_redis.publish.call_args[0]
            assert channel == f"race_state:{RACE_ID}"
            assert json.loads(message) == {"type": "race_state", "seq": 3, "data": row}


# ============================================
# Test: SSE Generator
# ============================================

class FakePubSub:
    """Returns queued messages, then None (idle)."""

    def __init__(self, messages):
        self.messages = list(messages)

    async def get_message(self, ignore_subscribe_messages=True, timeout=1.0):
        if self.messages:
            return self.messages.pop(0)
        return None


def _request(disconnect_after: int) -> MagicMock:
    """Request whose is_disconnected() turns true after N loop checks."""
    request = MagicMock()
    request.is_disconnected = AsyncMock(
        side_effect=[False] * disconnect_after + [True]
    )
    return request


def _patch_feed(pubsub, row):
    @asynccontextmanager
    async def subscribe(record_id):
        yield pubsub

    @asynccontextmanager
    async def session_context():
        yield None

    return (
        patch.object(redis_client, "subscribe_to_race_state", subscribe),
        patch.object(stream, "get_session_context", session_context),
        patch.object(race_store, "get_race_state", AsyncMock(return_value=row)),
    )


async def _collect(generator):
    return [event async for event in generator]


class TestRaceStateGenerator:
    """Event order produced for one SSE connection."""

    def _row(self) -> RaceState:
        return RaceState(
            id=RACE_ID,
            is_running=True,
            started_at_ms=1000,
            paused_offset_ms=0,
            lap_times=[185],
            total_race_time=2100,
            updated_at=None,
        )

    @pytest.mark.asyncio
    async def test_connected_then_snapshot_then_update(self):
        published = {"type": "race_state", "seq": 4, "data": {"id": RACE_ID, "lap_times": [185, 190]}}
        pubsub = FakePubSub([{"type": "message", "data": json.dumps(published)}])
        p1, p2, p3 = _patch_feed(pubsub, self._row())

        with p1, p2, p3:
            events = await _collect(stream.race_state_generator(_request(1), RACE_ID))

        assert [e["event"] for e in events] == ["connected", "snapshot", "race_state"]

        connected = json.loads(events[0]["data"])
        assert connected["race_state_id"] == RACE_ID
        assert isinstance(connected["server_time_ms"], int)
        assert events[0]["retry"] == stream.settings.sse_retry_ms

        snapshot = json.loads(events[1]["data"])
        assert snapshot["is_running"] is True
        assert snapshot["started_at_ms"] == 1000
        assert snapshot["lap_times"] == [185]

        assert events[2]["id"] == "4"
        assert json.loads(events[2]["data"])["lap_times"] == [185, 190]

    @pytest.mark.asyncio
    async def test_no_snapshot_when_record_missing(self):
        p1, p2, p3 = _patch_feed(FakePubSub([]), None)

        with p1, p2, p3:
            events = await _collect(stream.race_state_generator(_request(0), RACE_ID))

        assert [e["event"] for e in events] == ["connected"]

    @pytest.mark.asyncio
    async def test_idle_feed_sends_heartbeat(self):
        p1, p2, p3 = _patch_feed(FakePubSub([]), self._row())

        with p1, p2, p3, patch.object(stream.settings, "sse_keepalive_s", 0):
            events = await _collect(stream.race_state_generator(_request(1), RACE_ID))

        assert events[-1]["event"] == "heartbeat"
        assert "server_time_ms" in json.loads(events[-1]["data"])

    @pytest.mark.asyncio
    async def test_lost_publish_resent_as_snapshot_on_keepalive(self):
        # The row was stopped after connect but the publish never reached Redis
        stopped = self._row()
        stopped.is_running = False
        stopped.started_at_ms = None
        p1, p2, _ = _patch_feed(FakePubSub([]), None)
        reads = AsyncMock(side_effect=[self._row(), stopped])

        with p1, p2, patch.object(race_store, "get_race_state", reads), \
                patch.object(stream.settings, "sse_keepalive_s", 0):
            events = await _collect(stream.race_state_generator(_request(1), RACE_ID))

        assert [e["event"] for e in events] == ["connected", "snapshot", "snapshot", "heartbeat"]
        assert json.loads(events[1]["data"])["is_running"] is True
        resent = json.loads(events[2]["data"])
        assert resent["is_running"] is False
        assert resent["started_at_ms"] is None

    @pytest.mark.asyncio
    async def test_unchanged_row_sends_heartbeat_only(self):
        p1, p2, p3 = _patch_feed(FakePubSub([]), self._row())

        with p1, p2, p3, patch.object(stream.settings, "sse_keepalive_s", 0):
            events = await _collect(stream.race_state_generator(_request(2), RACE_ID))

        assert [e["event"] for e in events] == ["connected", "snapshot", "heartbeat", "heartbeat"]


class TestKeepalive:
    """Row comparison done at each keepalive."""

    def _row(self, **overrides) -> RaceState:
        row = RaceState(
            id=RACE_ID,
            is_running=True,
            started_at_ms=1000,
            paused_offset_ms=0,
            lap_times=[185],
            total_race_time=2100,
            updated_at=None,
        )
        for key, value in overrides.items():
            setattr(row, key, value)
        return row

    @pytest.mark.asyncio
    async def test_forwarded_row_is_not_resent(self):
        row = self._row()
        p1, p2, p3 = _patch_feed(FakePubSub([]), row)

        with p1, p2, p3:
            last, events = await stream._keepalive(race_store.to_payload(row))

        assert [e["event"] for e in events] == ["heartbeat"]
        assert last == race_store.to_payload(row)

    @pytest.mark.asyncio
    async def test_changed_row_is_resent(self):
        before = race_store.to_payload(self._row())
        after = self._row(lap_times=[185, 190])
        p1, p2, p3 = _patch_feed(FakePubSub([]), after)

        with p1, p2, p3:
            last, events = await stream._keepalive(before)

        assert [e["event"] for e in events] == ["snapshot", "heartbeat"]
        assert json.loads(events[0]["data"])["lap_times"] == [185, 190]
        assert last["lap_times"] == [185, 190]

    @pytest.mark.asyncio
    async def test_read_failure_still_sends_heartbeat(self):
        before = race_store.to_payload(self._row())
        p1, p2, _ = _patch_feed(FakePubSub([]), None)

        with p1, p2, patch.object(race_store, "get_race_state", AsyncMock(side_effect=RuntimeError("db down"))):
            last, events = await stream._keepalive(before)

        assert [e["event"] for e in events] == ["heartbeat"]
        assert last is before
