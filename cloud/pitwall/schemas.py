"""
Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator


# ============ Time Authority ============

class ServerTimeResponse(BaseModel):
    """Authority time in epoch milliseconds."""
    server_time_ms: int


# ============ Race State ============

class RaceStateResponse(BaseModel):
    """The full race record as stored. Every read and feed event carries all fields."""
    id: str
    is_running: bool
    started_at_ms: Optional[int] = None
    paused_offset_ms: int = 0
    lap_times: list[int] = []
    total_race_time: int
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("lap_times", mode="before")
    @classmethod
    def lap_times_default(cls, v):
        return v or []


class RaceStateUpdate(BaseModel):
    """
    Admin write to the race record.

    Fields left unset are not touched. Clients send complete, self-consistent
    field sets (e.g. start writes is_running, started_at_ms, paused_offset_ms and
    lap_times together); the store re-checks the invariants after merging.
    """
    is_running: Optional[bool] = None
    started_at_ms: Optional[int] = Field(None, ge=0)
    paused_offset_ms: Optional[int] = Field(None, ge=0)
    lap_times: Optional[list[int]] = None
    total_race_time: Optional[int] = Field(None, ge=1, le=24 * 3600)

    @field_validator("lap_times")
    @classmethod
    def laps_non_negative(cls, v):
        if v is not None and any(lap < 0 for lap in v):
            raise ValueError("lap durations must be >= 0 seconds")
        return v
