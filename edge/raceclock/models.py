"""
Race record snapshot and the display read model.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

RACE_STATE_ID = "00000000-0000-0000-0000-000000000001"
DEFAULT_TOTAL_RACE_TIME_S = 35 * 60


@dataclass(frozen=True)
class RaceRecord:
    """
    Immutable snapshot of the race record.

    A new snapshot replaces the old one wholesale; nothing patches a
    snapshot field by field.
    """
    is_running: bool = False
    started_at_ms: Optional[int] = None
    paused_offset_ms: int = 0
    lap_times: Tuple[int, ...] = ()
    total_race_time_s: int = DEFAULT_TOTAL_RACE_TIME_S
    updated_at: Optional[str] = None
    id: str = RACE_STATE_ID

    @property
    def total_race_time_ms(self) -> int:
        return self.total_race_time_s * 1000

    @property
    def laps_total_s(self) -> int:
        return sum(self.lap_times)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RaceRecord":
        """
        Build a snapshot from the stored row.

        Columns from the old ticking-counter schema (start_time,
        elapsed_seconds, current_lap) are ignored.
        """
        started = row.get("started_at_ms")
        lap_times = row.get("lap_times") or []
        return cls(
            is_running=bool(row.get("is_running", False)),
            started_at_ms=int(started) if started is not None else None,
            paused_offset_ms=int(row.get("paused_offset_ms") or 0),
            lap_times=tuple(int(lap) for lap in lap_times),
            total_race_time_s=int(row.get("total_race_time") or DEFAULT_TOTAL_RACE_TIME_S),
            updated_at=row.get("updated_at"),
            id=row.get("id") or RACE_STATE_ID,
        )

    def to_row(self) -> Dict[str, Any]:
        """Wire form of the snapshot."""
        return {
            "id": self.id,
            "is_running": self.is_running,
            "started_at_ms": self.started_at_ms,
            "paused_offset_ms": self.paused_offset_ms,
            "lap_times": list(self.lap_times),
            "total_race_time": self.total_race_time_s,
            "updated_at": self.updated_at,
        }

    def same_timing(self, other: Optional["RaceRecord"]) -> bool:
        """True if both snapshots produce identical derived values (updated_at is advisory)."""
        if other is None:
            return False
        return (
            self.is_running == other.is_running
            and self.started_at_ms == other.started_at_ms
            and self.paused_offset_ms == other.paused_offset_ms
            and self.lap_times == other.lap_times
            and self.total_race_time_s == other.total_race_time_s
        )


@dataclass(frozen=True)
class RaceView:
    """What a display shows for one frame."""
    time_left_seconds: int
    is_running: bool
    current_lap: int
    lap_times: Tuple[int, ...]
    current_lap_elapsed_seconds: int
    total_race_time_seconds: int
    is_loading: bool
    is_connected: bool = True
    clock_degraded: bool = False
    is_low_time: bool = False
    is_critical_time: bool = False
    best_lap_seconds: Optional[int] = None
    lap_deltas: Tuple[int, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        """Read model keyed the way the web dashboard consumes it."""
        return {
            "timeLeftSeconds": self.time_left_seconds,
            "isRunning": self.is_running,
            "currentLap": self.current_lap,
            "lapTimes": list(self.lap_times),
            "currentLapElapsedSeconds": self.current_lap_elapsed_seconds,
            "totalRaceTimeSeconds": self.total_race_time_seconds,
            "isLoading": self.is_loading,
            "isConnected": self.is_connected,
            "clockDegraded": self.clock_degraded,
            "isLowTime": self.is_low_time,
            "isCriticalTime": self.is_critical_time,
            "bestLapSeconds": self.best_lap_seconds,
            "lapDeltas": list(self.lap_deltas),
        }
