"""
Redis client for change-feed pub/sub.

Every committed race record write is published as the full row on one
channel per record. SSE connections subscribe to that channel.
"""
import json
from typing import Optional, AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.asyncio.client import PubSub

from pitwall.config import get_settings

settings = get_settings()

# Global Redis connection pool
_redis_pool: Optional[redis.Redis] = None

# Sequence counters live this long after the last write
SEQ_TTL_S = 7200


async def get_redis() -> redis.Redis:
    """Get or create Redis connection."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None


def _channel(record_id: str) -> str:
    return f"race_state:{record_id}"


async def incr_feed_seq(record_id: str) -> int:
    """Next change-feed sequence number for a record (used as the SSE id)."""
    r = await get_redis()
    key = f"race_state_seq:{record_id}"
    seq = await r.incr(key)
    await r.expire(key, SEQ_TTL_S)
    return int(seq)


async def publish_race_state(record_id: str, row: dict) -> int:
    """Publish the full updated row to every subscriber. Returns the sequence id."""
    r = await get_redis()
    seq = await incr_feed_seq(record_id)
    message = json.dumps({"type": "race_state", "seq": seq, "data": row})
    await r.publish(_channel(record_id), message)
    return seq


@asynccontextmanager
async def subscribe_to_race_state(record_id: str) -> AsyncIterator[PubSub]:
    """Subscribe to a record's change channel for SSE."""
    r = await get_redis()
    pubsub = r.pubsub()
    channel = _channel(record_id)
    await pubsub.subscribe(channel)
    try:
        yield pubsub
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()
