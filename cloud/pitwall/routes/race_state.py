"""
Race record API routes.

Anyone may read the record. Only the admin may write it, and every write
carries the complete field set for the transition it performs.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from pitwall.database import get_session
from pitwall.schemas import RaceStateResponse, RaceStateUpdate
from pitwall.services import race_store
from pitwall.services.auth import AuthInfo, require_admin

router = APIRouter(prefix="/api/v1", tags=["race-state"])

# Columns that cannot be written as null
NON_NULLABLE_FIELDS = ("is_running", "paused_offset_ms", "lap_times", "total_race_time")


@router.get("/race-state", response_model=RaceStateResponse)
async def get_race_state(db: AsyncSession = Depends(get_session)):
    """Current race record (full row)."""
    row = await race_store.get_race_state(db)
    if row is None:
        raise HTTPException(status_code=404, detail="Race record not found")
    return row


@router.patch("/race-state", response_model=RaceStateResponse)
async def update_race_state(
    update: RaceStateUpdate,
    db: AsyncSession = Depends(get_session),
    auth: AuthInfo = Depends(require_admin),
):
    """
    Apply an admin write and publish the new row on the change feed.

    Only fields present in the request body are changed. An explicit
    null for started_at_ms clears it (stop/reset).
    """
    changes = update.model_dump(exclude_unset=True)
    for field in NON_NULLABLE_FIELDS:
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=422, detail=f"{field} cannot be null")
    if not changes:
        raise HTTPException(status_code=422, detail="No fields to update")

    try:
        row = await race_store.apply_update(db, changes)
    except race_store.RaceStateConflict as e:
        raise HTTPException(status_code=422, detail=str(e))

    return row
