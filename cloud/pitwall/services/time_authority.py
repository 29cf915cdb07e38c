"""
Time authority: the one clock every client calibrates against.
"""
import time


def server_time_ms() -> int:
    """Current server wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
