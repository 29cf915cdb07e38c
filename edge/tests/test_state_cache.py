"""
Race state cache tests.

Tests for:
1. Loading state before the first record
2. Whole-snapshot replacement and listener notification
3. Redelivered records are no-ops
4. Connectivity transitions

Run with: pytest tests/test_state_cache.py -v
"""
from raceclock.models import RaceRecord
from raceclock.state_cache import RaceStateCache


class TestSnapshot:
    """Snapshot replacement."""

    def test_starts_loading(self):
        cache = RaceStateCache()

        assert cache.is_loading
        assert cache.snapshot is None
        assert cache.get_snapshot() is None
        assert not cache.is_connected

    def test_replace_notifies_with_previous(self, running_record):
        cache = RaceStateCache()
        calls = []
        cache.on_update(lambda prev, cur: calls.append((prev, cur)))

        assert cache.replace(running_record) is True

        assert not cache.is_loading
        assert calls == [(None, running_record)]

    def test_identical_record_is_noop(self, running_record):
        cache = RaceStateCache()
        calls = []
        cache.on_update(lambda prev, cur: calls.append(cur))

        cache.replace(running_record)
        redelivered = RaceRecord.from_row(running_record.to_row())
        assert cache.replace(redelivered) is False

        assert len(calls) == 1

    def test_newer_record_replaces_wholesale(self, running_record):
        cache = RaceStateCache()
        cache.replace(running_record)

        stopped = RaceRecord(is_running=False, started_at_ms=None, lap_times=(185,))
        cache.replace(stopped)

        assert cache.snapshot is stopped

    def test_unsubscribe(self, running_record, stopped_record):
        cache = RaceStateCache()
        calls = []
        unsubscribe = cache.on_update(lambda prev, cur: calls.append(cur))

        cache.replace(running_record)
        unsubscribe()
        cache.replace(stopped_record)

        assert calls == [running_record]

    def test_failing_listener_does_not_block_others(self, running_record):
        cache = RaceStateCache()
        calls = []

        def broken(prev, cur):
            raise RuntimeError("render exploded")

        cache.on_update(broken)
        cache.on_update(lambda prev, cur: calls.append(cur))

        cache.replace(running_record)

        assert calls == [running_record]
        assert cache.snapshot == running_record


class TestConnectivity:
    """Connected / disconnected flag with last-known-good snapshot."""

    def test_disconnect_keeps_snapshot(self, running_record):
        cache = RaceStateCache()
        cache.replace(running_record)
        cache.mark_connected()

        cache.mark_disconnected("feed dropped")

        assert not cache.is_connected
        assert cache.disconnect_reason == "feed dropped"
        assert cache.snapshot == running_record

    def test_listeners_see_transitions_only(self):
        cache = RaceStateCache()
        seen = []
        cache.on_connectivity(seen.append)

        cache.mark_connected()
        cache.mark_connected()
        cache.mark_disconnected("a")
        cache.mark_disconnected("b")
        cache.mark_connected()

        assert seen == [True, False, True]
        assert cache.disconnect_reason is None
