"""Error kinds surfaced by weighttracker.

Every failure a user can see derives from ``TrackerError`` so the CLI can
report it as a single message. Aggregation itself never raises; an empty
window is represented as ``None``.
"""

__all__ = [
    "TrackerError",
    "Unavailable",
    "AccessDenied",
    "InvalidInput",
    "WriteFailed",
    "QueryFailed",
]


class TrackerError(RuntimeError):
    """Base class for all user-visible tracker failures."""


class Unavailable(TrackerError):
    """The health-data store is not present (no config, missing directory, ...)."""


class AccessDenied(TrackerError):
    """Authorization against the store was refused or is missing."""


class InvalidInput(TrackerError, ValueError):
    """A weight entry that is non-numeric or not strictly positive."""


class WriteFailed(TrackerError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to save weight: {reason}")
        self.reason = reason


class QueryFailed(TrackerError):
    """Reading samples from the store failed."""
