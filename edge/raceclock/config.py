"""
Client configuration for race clock displays and the admin console.

Environment Variables:
    RACECLOCK_SERVER_URL        - Pitwall server base URL (required)
    RACECLOCK_ADMIN_TOKEN       - Admin token; presence enables race control
    RACECLOCK_TRANSPORT         - "sse" (default) or "poll"
    RACECLOCK_SYNC_ATTEMPTS     - Time authority samples per sync (default: 3)
    RACECLOCK_SYNC_ATTEMPT_DELAY_S - Pause between sync samples (default: 0.05)
    RACECLOCK_RESYNC_STALENESS_S - Resync when the offset is older than this (default: 20)
    RACECLOCK_TICK_INTERVAL_S   - Display refresh cadence while running (default: 0.1)
    RACECLOCK_POLL_INTERVAL_S   - Record poll cadence for the poll transport (default: 1.0)
    RACECLOCK_REQUEST_TIMEOUT_S - HTTP request timeout (default: 5)
    RACECLOCK_RECONNECT_BASE_S  - First change feed reconnect delay (default: 1)
    RACECLOCK_RECONNECT_MAX_S   - Reconnect backoff cap (default: 30)
    RACECLOCK_FEED_IDLE_TIMEOUT_S - Reconnect after this much feed silence (default: 45)
    RACECLOCK_COMPENSATION_S    - Spectator display compensation, 0 = off (default: 0)
    RACECLOCK_TOTAL_LAPS        - Laps in the race, for pace display (default: 11)
    RACECLOCK_TARGET_RACE_TIME_S - Pace target for all laps (default: 2040)
    RACECLOCK_LOG_LEVEL         - Logging level (default: INFO)
"""
import os
from dataclasses import dataclass


@dataclass
class ClientConfig:
    """Configuration for one race clock client."""
    server_url: str = "http://localhost:8000"
    admin_token: str = ""

    # Record transport: "sse" push feed or "poll"
    transport: str = "sse"

    # Clock sync
    sync_attempts: int = 3
    sync_attempt_delay_s: float = 0.05
    resync_staleness_s: float = 20.0

    # Display
    tick_interval_s: float = 0.1
    compensation_s: float = 0.0  # Spectator-only display shift, never used for lap math

    # Network
    poll_interval_s: float = 1.0
    request_timeout_s: float = 5.0
    reconnect_base_s: float = 1.0
    reconnect_max_s: float = 30.0
    feed_idle_timeout_s: float = 45.0  # Several missed heartbeats; reconnect after this much silence

    # Pace
    total_laps: int = 11
    target_race_time_s: int = 34 * 60  # 1 min safety margin under the 35 min race

    # Logging
    log_level: str = "INFO"

    @property
    def is_admin(self) -> bool:
        return bool(self.admin_token)

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Load configuration from environment variables."""
        return cls(
            server_url=os.environ.get("RACECLOCK_SERVER_URL", "http://localhost:8000"),
            admin_token=os.environ.get("RACECLOCK_ADMIN_TOKEN", ""),
            transport=os.environ.get("RACECLOCK_TRANSPORT", "sse").lower(),
            sync_attempts=int(os.environ.get("RACECLOCK_SYNC_ATTEMPTS", "3")),
            sync_attempt_delay_s=float(os.environ.get("RACECLOCK_SYNC_ATTEMPT_DELAY_S", "0.05")),
            resync_staleness_s=float(os.environ.get("RACECLOCK_RESYNC_STALENESS_S", "20")),
            tick_interval_s=float(os.environ.get("RACECLOCK_TICK_INTERVAL_S", "0.1")),
            poll_interval_s=float(os.environ.get("RACECLOCK_POLL_INTERVAL_S", "1.0")),
            request_timeout_s=float(os.environ.get("RACECLOCK_REQUEST_TIMEOUT_S", "5")),
            reconnect_base_s=float(os.environ.get("RACECLOCK_RECONNECT_BASE_S", "1")),
            reconnect_max_s=float(os.environ.get("RACECLOCK_RECONNECT_MAX_S", "30")),
            feed_idle_timeout_s=float(os.environ.get("RACECLOCK_FEED_IDLE_TIMEOUT_S", "45")),
            compensation_s=float(os.environ.get("RACECLOCK_COMPENSATION_S", "0")),
            total_laps=int(os.environ.get("RACECLOCK_TOTAL_LAPS", "11")),
            target_race_time_s=int(os.environ.get("RACECLOCK_TARGET_RACE_TIME_S", str(34 * 60))),
            log_level=os.environ.get("RACECLOCK_LOG_LEVEL", "INFO"),
        )
