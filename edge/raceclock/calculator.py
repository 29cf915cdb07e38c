"""
Elapsed / remaining time derivation.

Everything here is a pure function of (record, corrected_now_ms). Nothing
accumulates between calls, so there is no drift to correct: a client that
misses a hundred ticks computes the same value as one that missed none.

All arithmetic stays in milliseconds. Whole seconds appear only at the
display boundary (time_left_seconds, elapsed_seconds, format_clock) and
when a lap is committed.
"""
import logging
from typing import List, Optional, Sequence

from raceclock.models import RaceRecord

logger = logging.getLogger(__name__)

# Display thresholds (seconds remaining)
LOW_TIME_S = 5 * 60
CRITICAL_TIME_S = 60


class AnomalyThrottle:
    """
    Logs a data-consistency warning once per offending record, not once per tick.

    Each display owns one, so two clients watching the same bad record each
    report it once.
    """

    def __init__(self):
        self._last_key = None

    def warn(self, key, message: str) -> None:
        if key != self._last_key:
            self._last_key = key
            logger.warning(message)


def _warn_anomaly(anomalies: Optional[AnomalyThrottle], key, message: str) -> None:
    if anomalies is None:
        logger.warning(message)
    else:
        anomalies.warn(key, message)


def elapsed_ms(record: RaceRecord, now_ms: int, anomalies: Optional[AnomalyThrottle] = None) -> int:
    """
    Race time elapsed at now_ms, net of paused time. 0 when not running.

    Inconsistent records are logged through `anomalies` when given, otherwise
    on every call.
    """
    if not record.is_running:
        return 0

    if record.started_at_ms is None:
        _warn_anomaly(
            anomalies,
            ("no_start", record.id, record.updated_at),
            "Race record is running without started_at_ms; treating elapsed as 0",
        )
        return 0

    elapsed = now_ms - record.started_at_ms - record.paused_offset_ms
    if elapsed < 0:
        _warn_anomaly(
            anomalies,
            ("before_start", record.started_at_ms, record.paused_offset_ms),
            f"Clock anomaly: now {now_ms} is before race start "
            f"{record.started_at_ms} (+{record.paused_offset_ms} paused); clamping elapsed to 0",
        )
        return 0
    return elapsed


def remaining_ms(record: RaceRecord, now_ms: int, anomalies: Optional[AnomalyThrottle] = None) -> int:
    """Race time left at now_ms, never negative."""
    return max(0, record.total_race_time_ms - elapsed_ms(record, now_ms, anomalies))


def elapsed_seconds(record: RaceRecord, now_ms: int, anomalies: Optional[AnomalyThrottle] = None) -> int:
    """Whole seconds elapsed (floor)."""
    return elapsed_ms(record, now_ms, anomalies) // 1000


def time_left_seconds(record: RaceRecord, now_ms: int, anomalies: Optional[AnomalyThrottle] = None) -> int:
    """Whole seconds left, rounded up so the clock reads 0 only when time is out."""
    return -(-remaining_ms(record, now_ms, anomalies) // 1000)


def current_lap_elapsed_seconds(
    record: RaceRecord, now_ms: int, anomalies: Optional[AnomalyThrottle] = None
) -> int:
    """Seconds into the lap in progress."""
    return max(0, elapsed_seconds(record, now_ms, anomalies) - record.laps_total_s)


def current_lap_number(record: RaceRecord) -> int:
    """Completed laps, plus the one in progress while running."""
    return len(record.lap_times) + (1 if record.is_running else 0)


def next_lap_duration(record: RaceRecord, now_ms: int) -> int:
    """
    Duration to store for a lap committed at now_ms.

    Lap boundaries quantize to the whole second at commit time:
    floor(elapsed seconds) minus the sum of earlier laps.
    """
    return max(0, elapsed_seconds(record, now_ms) - record.laps_total_s)


def format_clock(seconds: int) -> str:
    """MM:SS, e.g. 2040 -> '34:00'."""
    seconds = max(0, int(seconds))
    return "%02d:%02d" % (seconds // 60, seconds % 60)


def format_delta(delta_s: int) -> str:
    """Signed pace delta, e.g. '+3s' / '-2s'."""
    sign = "+" if delta_s >= 0 else ""
    return f"{sign}{delta_s}s"


def is_low_time(time_left_s: int, is_running: bool) -> bool:
    return is_running and time_left_s < LOW_TIME_S


def is_critical_time(time_left_s: int, is_running: bool) -> bool:
    return is_running and time_left_s < CRITICAL_TIME_S


# ============ Lap statistics ============

def best_lap(lap_times: Sequence[int]) -> Optional[int]:
    """Fastest completed lap."""
    return min(lap_times) if lap_times else None


def target_lap_seconds(target_race_time_s: int, total_laps: int) -> float:
    """Even pace needed to finish total_laps inside target_race_time_s."""
    if total_laps <= 0:
        return 0.0
    return target_race_time_s / total_laps


def cumulative_deltas(lap_times: Sequence[int], target_lap_s: float) -> List[int]:
    """For each lap, total time used so far minus time allowed by the pace target."""
    deltas = []
    used = 0
    for index, lap in enumerate(lap_times):
        used += lap
        deltas.append(round(used - (index + 1) * target_lap_s))
    return deltas


def closest_to_target(lap_times: Sequence[int], target_lap_s: float) -> Optional[int]:
    """The lap whose duration is nearest the pace target; earliest wins a tie."""
    if not lap_times:
        return None
    return min(lap_times, key=lambda lap: abs(lap - target_lap_s))
