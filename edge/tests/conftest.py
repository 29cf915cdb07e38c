"""
Pytest configuration and fixtures for race clock client tests.
"""
import os
import sys

# Add the edge directory to path so `raceclock` imports resolve
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from raceclock.models import RaceRecord


class FakeClock:
    """Controllable local wall clock (ms) and monotonic clock (s)."""

    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms
        self.mono = 1000.0

    def wall(self) -> int:
        return self.now_ms

    def monotonic(self) -> float:
        return self.mono

    def advance(self, ms: int) -> None:
        self.now_ms += ms
        self.mono += ms / 1000


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def stopped_record():
    return RaceRecord()


@pytest.fixture
def running_record():
    return RaceRecord(is_running=True, started_at_ms=1000, paused_offset_ms=0, lap_times=())
