"""Error types raised while syncing Meetup events into Discord."""


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


class SourceError(SyncError):
    """Failure talking to the Meetup directory."""


class SourceUnavailable(SourceError):
    """Meetup could not be reached or rejected the request."""


class SourceSchemaMismatch(SourceError):
    """Meetup answered with a payload we cannot decode."""


class GroupNotFound(SourceError):
    """Meetup has no group with the requested url name."""

    def __init__(self, group_name: str):
        super().__init__(f"Meetup group not found: {group_name}")
        self.group_name = group_name


class TargetError(SyncError):
    """Failure talking to Discord."""


class TargetUnavailable(TargetError):
    """Listing or creating scheduled events failed."""


class IdentifierResolutionFailure(TargetError):
    """A guild or channel id no longer resolves on Discord."""

    def __init__(self, kind: str, identifier: str, reason: str = 'not found'):
        super().__init__(f"Could not resolve {kind} {identifier}: {reason}")
        self.kind = kind
        self.identifier = identifier


class TimestampParseFailure(SyncError, ValueError):
    """A Meeting start time could not be parsed."""

    def __init__(self, value: str):
        super().__init__(f"Unparseable start time: {value!r}")
        self.value = value


class EventRejected(TargetUnavailable):
    """Discord refused one scheduled event, e.g. a start time in the past."""
