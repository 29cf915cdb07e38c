"""
SQLAlchemy ORM models for the Pitwall race clock.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, BigInteger, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class RaceState(Base):
    """
    The single race timing record.

    Elapsed and remaining time are never stored here. Clients derive them
    from started_at_ms (Authority time) and paused_offset_ms.
    """
    __tablename__ = "race_state"

    id = Column(String, primary_key=True)
    is_running = Column(Boolean, nullable=False, default=False)
    started_at_ms = Column(BigInteger)  # Authority-time epoch ms, null unless running
    paused_offset_ms = Column(BigInteger, nullable=False, default=0)
    lap_times = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list)  # Seconds
    total_race_time = Column(Integer, nullable=False, default=2100)  # Seconds
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
