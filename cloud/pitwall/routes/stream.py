"""
Server-Sent Events (SSE) change feed for the race record.

Event types:
- connected: Initial connection acknowledgement (includes server_time_ms)
- snapshot: The full current record, read from the database on every connect
- race_state: The full record after each committed write
- heartbeat: Server timestamp while the feed is idle

Every race_state event carries the whole row, so a reconnecting client only
needs the snapshot to catch up; there is no replay of intermediate writes.

A write whose publish failed never reaches the channel. At each keepalive
the generator re-reads the row and sends a fresh snapshot ahead of the
heartbeat when it differs from the last row this connection sent, so
connected clients see every committed write within one keepalive period.
"""
import asyncio
import json
import time
from typing import List, Optional, Tuple

import structlog
from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from pitwall.database import get_session_context
from pitwall import redis_client
from pitwall.config import get_settings
from pitwall.services import race_store
from pitwall.services.time_authority import server_time_ms

settings = get_settings()
logger = structlog.get_logger("stream")
router = APIRouter(prefix="/api/v1", tags=["stream"])


def _heartbeat() -> dict:
    return {
        "event": "heartbeat",
        "data": json.dumps({"server_time_ms": server_time_ms()}),
    }


def _snapshot(payload: dict) -> dict:
    return {
        "event": "snapshot",
        "data": json.dumps(payload),
    }


async def _read_payload() -> Optional[dict]:
    async with get_session_context() as db:
        row = await race_store.get_race_state(db)
    return race_store.to_payload(row) if row is not None else None


async def _keepalive(last_payload: Optional[dict]) -> Tuple[Optional[dict], List[dict]]:
    """Heartbeat, preceded by a snapshot if the row changed without a feed event."""
    events = []
    try:
        payload = await _read_payload()
    except Exception as e:
        logger.warning("Keepalive snapshot read failed", error=str(e))
        payload = None
    if payload is not None and payload != last_payload:
        logger.info("Row changed without a feed event; resending snapshot")
        events.append(_snapshot(payload))
        last_payload = payload
    events.append(_heartbeat())
    return last_payload, events


async def race_state_generator(request: Request, record_id: str):
    """
    Generator that yields SSE events for the race record.
    Subscribes to Redis pub/sub and forwards every published row.

    Args:
        request: FastAPI request object
        record_id: Race record ID to stream
    """
    yield {
        "event": "connected",
        "retry": settings.sse_retry_ms,
        "data": json.dumps({
            "race_state_id": record_id,
            "server_time_ms": server_time_ms(),
        }),
    }

    # Subscribe before reading the snapshot so a write landing in between is not lost
    async with redis_client.subscribe_to_race_state(record_id) as pubsub:
        last_payload = await _read_payload()
        if last_payload is not None:
            yield _snapshot(last_payload)

        last_sent = time.monotonic()

        while True:
            if await request.is_disconnected():
                break

            try:
                message = await asyncio.wait_for(
                    pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0),
                    timeout=settings.sse_keepalive_s,
                )

                if message and message["type"] == "message":
                    data = json.loads(message["data"])
                    sse_event = {
                        "event": data.get("type", "race_state"),
                        "data": json.dumps(data.get("data", {})),
                    }
                    seq_id = data.get("seq")
                    if seq_id is not None:
                        sse_event["id"] = str(seq_id)
                    yield sse_event
                    last_sent = time.monotonic()
                    if sse_event["event"] == "race_state":
                        last_payload = data.get("data")
                    continue
                keepalive_due = time.monotonic() - last_sent >= settings.sse_keepalive_s

            except asyncio.TimeoutError:
                keepalive_due = True

            except Exception as e:
                # Don't crash the stream for transient errors
                logger.warning("Change feed error", error=str(e))
                await asyncio.sleep(1)
                continue

            if keepalive_due:
                last_payload, events = await _keepalive(last_payload)
                for event in events:
                    yield event
                last_sent = time.monotonic()


@router.get("/race-state/stream")
async def stream_race_state(request: Request):
    """
    SSE endpoint for race record changes.

    Clients should reconnect on drop and re-read the snapshot that is sent
    at the start of every connection.
    """
    return EventSourceResponse(
        race_state_generator(request, settings.race_state_id),
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
