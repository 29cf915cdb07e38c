"""
Race clock client errors.

Only admin commands raise these to their callers. Sync, fetch and feed
failures are logged and recovered inside the client.
"""


class RaceClockError(Exception):
    """Base class for race clock client errors."""


class TimeAuthorityError(RaceClockError):
    """The time authority could not be reached or returned garbage."""


class RecordFetchError(RaceClockError):
    """The race record could not be loaded."""


class AdminCommandError(RaceClockError):
    """A race-control write was not accepted."""


class PermissionDeniedError(AdminCommandError):
    """The client is not allowed to control the race."""
