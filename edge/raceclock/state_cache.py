"""
Race state cache: the latest race record this client has seen.
"""
import logging
from typing import Callable, List, Optional

from raceclock.models import RaceRecord

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Optional[RaceRecord], RaceRecord], None]


class RaceStateCache:
    """
    Holds one immutable RaceRecord snapshot.

    Every update replaces the snapshot wholesale; the server always sends
    the full row, so there is nothing to merge. Until the first record
    arrives the cache is loading (snapshot is None).

    Listeners are called as callback(previous, current) only when the new
    snapshot differs from the held one, so redelivered records are no-ops.
    """

    def __init__(self):
        self._snapshot: Optional[RaceRecord] = None
        self._listeners: List[UpdateCallback] = []
        self._connected = False
        self._disconnect_reason: Optional[str] = None
        self._connectivity_listeners: List[Callable[[bool], None]] = []

    @property
    def snapshot(self) -> Optional[RaceRecord]:
        return self._snapshot

    @property
    def is_loading(self) -> bool:
        return self._snapshot is None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def disconnect_reason(self) -> Optional[str]:
        return self._disconnect_reason

    def get_snapshot(self) -> Optional[RaceRecord]:
        return self._snapshot

    def replace(self, record: RaceRecord) -> bool:
        """Swap in a new snapshot. Returns True if it differed from the held one."""
        previous = self._snapshot
        if previous == record:
            return False

        self._snapshot = record
        for callback in list(self._listeners):
            try:
                callback(previous, record)
            except Exception:
                logger.exception("Race state listener failed")
        return True

    def on_update(self, callback: UpdateCallback) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def on_connectivity(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a connectivity listener, called with the new connected flag."""
        self._connectivity_listeners.append(callback)

        def unsubscribe():
            if callback in self._connectivity_listeners:
                self._connectivity_listeners.remove(callback)

        return unsubscribe

    def mark_connected(self) -> None:
        if self._connected:
            return
        self._connected = True
        self._disconnect_reason = None
        self._notify_connectivity()

    def mark_disconnected(self, reason: str) -> None:
        """Keep the last-known-good snapshot but flag it as possibly stale."""
        self._disconnect_reason = reason
        if not self._connected:
            return
        self._connected = False
        logger.warning(f"Race state source disconnected: {reason}")
        self._notify_connectivity()

    def _notify_connectivity(self) -> None:
        for callback in list(self._connectivity_listeners):
            try:
                callback(self._connected)
            except Exception:
                logger.exception("Connectivity listener failed")
