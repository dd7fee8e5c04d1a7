"""
Exception hierarchy for the tracker.

Per-record problems (validation, resolution) are counted by the bridge
pipeline; anything else propagates to the caller.
"""


class TrackerError(Exception):
    """Base class for tracker errors."""


class RecordValidationError(TrackerError, ValueError):
    """A raw source record is missing required fields or is malformed."""


class ResolutionError(TrackerError):
    """An observation could not be resolved to a canonical provider."""


class ReviewError(TrackerError):
    """A review action could not be applied to a pending match."""


class InvalidStatusTransition(TrackerError):
    """A fraud indicator status change is not allowed."""


class AuditLogImmutableError(TrackerError):
    """Match audit log entries are write-once."""
