"""
Race record store.

Holds the one race_state row and is the only code that writes it. A write
is merged onto the current row, checked against the record invariants,
committed, and then published in full on the change feed.

Invariants enforced on every write:
    - started_at_ms is set if and only if is_running is true
    - paused_offset_ms >= 0
    - lap durations are whole seconds >= 0
"""
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitwall import redis_client
from pitwall.config import get_settings
from pitwall.models import RaceState

settings = get_settings()
logger = structlog.get_logger("race_store")


class RaceStateConflict(ValueError):
    """A write would leave the record violating an invariant."""


def to_payload(row: RaceState) -> dict:
    """Wire form of the row (the same shape for reads and feed events)."""
    return {
        "id": row.id,
        "is_running": bool(row.is_running),
        "started_at_ms": row.started_at_ms,
        "paused_offset_ms": row.paused_offset_ms or 0,
        "lap_times": list(row.lap_times or []),
        "total_race_time": row.total_race_time,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def get_race_state(db: AsyncSession) -> Optional[RaceState]:
    result = await db.execute(
        select(RaceState).where(RaceState.id == settings.race_state_id)
    )
    return result.scalar_one_or_none()


async def ensure_seed_row(db: AsyncSession) -> RaceState:
    """Create the fixed-identity record if it does not exist yet."""
    row = await get_race_state(db)
    if row is not None:
        return row

    row = RaceState(
        id=settings.race_state_id,
        is_running=False,
        started_at_ms=None,
        paused_offset_ms=0,
        lap_times=[],
        total_race_time=settings.default_total_race_time_s,
        updated_at=datetime.now(timezone.utc),
    )
    db.add(row)
    await db.commit()
    logger.info("Seeded race record", race_state_id=row.id)
    return row


def check_invariants(fields: dict) -> None:
    """Raise RaceStateConflict if the merged field set is inconsistent."""
    running = fields["is_running"]
    started = fields["started_at_ms"]
    if running and started is None:
        raise RaceStateConflict("is_running requires started_at_ms")
    if not running and started is not None:
        raise RaceStateConflict("started_at_ms must be null when the race is not running")
    if fields["paused_offset_ms"] < 0:
        raise RaceStateConflict("paused_offset_ms must be >= 0")
    if any(lap < 0 for lap in fields["lap_times"]):
        raise RaceStateConflict("lap durations must be >= 0")


async def apply_update(db: AsyncSession, changes: dict) -> RaceState:
    """
    Merge `changes` onto the record, commit, and publish the full row.

    Args:
        db: Session to write with
        changes: Column values to set; keys absent are left unchanged

    Returns:
        The committed row

    Raises:
        RaceStateConflict: merged record would violate an invariant
    """
    row = await ensure_seed_row(db)

    merged = {
        "is_running": row.is_running,
        "started_at_ms": row.started_at_ms,
        "paused_offset_ms": row.paused_offset_ms or 0,
        "lap_times": list(row.lap_times or []),
        "total_race_time": row.total_race_time,
    }
    merged.update(changes)
    check_invariants(merged)

    row.is_running = merged["is_running"]
    row.started_at_ms = merged["started_at_ms"]
    row.paused_offset_ms = merged["paused_offset_ms"]
    # Always assign a new list; in-place JSON mutation is not tracked
    row.lap_times = list(merged["lap_times"])
    row.total_race_time = merged["total_race_time"]
    row.updated_at = datetime.now(timezone.utc)

    await db.commit()
    await db.refresh(row)

    payload = to_payload(row)
    logger.info(
        "Race record updated",
        fields=sorted(changes),
        is_running=row.is_running,
        started_at_ms=row.started_at_ms,
        laps=len(payload["lap_times"]),
    )

    try:
        await redis_client.publish_race_state(row.id, payload)
    except Exception:
        # The write is durable; open feeds resend it as a snapshot at their next keepalive
        logger.exception("Change feed publish failed", race_state_id=row.id)

    return row
