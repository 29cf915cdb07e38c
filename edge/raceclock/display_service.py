"""
Race clock display service and admin console.

Runs a race clock session and prints one status line per frame change.
The admin console issues a single race-control command and exits.

Usage:
    raceclock-display --server-url http://pitwall:8000
    RACECLOCK_ADMIN_TOKEN=... raceclock-admin lap
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from raceclock import calculator
from raceclock.config import ClientConfig
from raceclock.errors import PermissionDeniedError, RaceClockError
from raceclock.models import RaceRecord, RaceView
from raceclock.session import RaceClockSession

logger = logging.getLogger("raceclock.display_service")

ADMIN_COMMANDS = ("start", "stop", "lap", "reset")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )


def format_status_line(view: RaceView) -> str:
    """One-line rendering of a frame, e.g. '33:59 | LAP 3 01:07 | BEST 03:05 | LIVE'."""
    if view.is_loading:
        return "--:-- | loading race state..."

    parts = [calculator.format_clock(view.time_left_seconds)]
    if view.is_critical_time:
        parts[0] += " !!"
    elif view.is_low_time:
        parts[0] += " !"

    if view.is_running:
        parts.append(
            f"LAP {view.current_lap} {calculator.format_clock(view.current_lap_elapsed_seconds)}"
        )
    else:
        parts.append(f"STOPPED after {len(view.lap_times)} laps")

    if view.best_lap_seconds is not None:
        parts.append(f"BEST {calculator.format_clock(view.best_lap_seconds)}")
    if view.lap_deltas:
        parts.append(f"PACE {calculator.format_delta(view.lap_deltas[-1])}")

    status = "LIVE" if view.is_connected else "OFFLINE"
    if view.clock_degraded:
        status += " (clock unsynced)"
    parts.append(status)
    return " | ".join(parts)


def print_view(view: RaceView) -> None:
    print(format_status_line(view), flush=True)


def _parse_args(argv: Optional[List[str]], admin: bool) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Race clock admin console" if admin else "Race clock display",
    )
    if admin:
        parser.add_argument("command", choices=ADMIN_COMMANDS, help="Race control command")
    parser.add_argument("--server-url", help="Pitwall server base URL")
    parser.add_argument("--transport", choices=("sse", "poll"), help="Race record transport")
    parser.add_argument("--log-level", help="Logging level")
    return parser.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> ClientConfig:
    config = ClientConfig.from_env()
    if args.server_url:
        config.server_url = args.server_url
    if args.transport:
        config.transport = args.transport
    if args.log_level:
        config.log_level = args.log_level
    return config


# ============ Display ============

async def run(config: ClientConfig) -> None:
    """Run the display until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    async with RaceClockSession(config, print_view):
        await stop.wait()


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv, admin=False)
    config = _config_from_args(args)
    setup_logging(config.log_level)
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        pass


# ============ Admin console ============

async def run_admin_command(session: RaceClockSession, command: str) -> RaceRecord:
    """Issue one command against a loaded session and return the record as written."""
    if session.issuer is None:
        raise PermissionDeniedError("race control is only available to the admin")
    if command == "start":
        return await session.issuer.start_race()
    if command == "stop":
        return await session.issuer.stop_race()
    if command == "lap":
        return await session.issuer.record_lap()
    if command == "reset":
        return await session.issuer.reset_race()
    raise ValueError(f"Unknown command: {command}")


async def run_admin(config: ClientConfig, command: str) -> int:
    if not config.is_admin:
        logger.error("RACECLOCK_ADMIN_TOKEN is not set; race control is disabled")
        return 2

    async with RaceClockSession(config, lambda view: None) as session:
        if not await session.wait_loaded():
            logger.error("Race record did not load; command not sent")
            return 1
        try:
            record = await run_admin_command(session, command)
        except RaceClockError as e:
            logger.error(f"{command} failed: {e}")
            return 1

        # Show the record as written, not the pre-command snapshot
        session.cache.replace(record)
        print(format_status_line(session.view()), flush=True)
    return 0


def admin_main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv, admin=True)
    config = _config_from_args(args)
    setup_logging(config.log_level)
    sys.exit(asyncio.run(run_admin(config, args.command)))


if __name__ == "__main__":
    main()
