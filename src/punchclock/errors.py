"""Error taxonomy for the session engine.

ConstraintError and NotFoundError signal logic or race conditions and are
never retried. StorageError wraps backing-store I/O failures; a failed
begin/end is safe to re-invoke once the store is healthy.
"""


class TrackerError(Exception):
    """Base class for user-visible, non-fatal engine errors."""


class ConstraintError(TrackerError):
    """Operation would break the single-open-entry invariant or references a missing project."""


class NotFoundError(TrackerError):
    """Target entry or project no longer exists."""


class StorageError(TrackerError):
    """I/O failure in the backing store."""


class ClockSkewWarning(UserWarning):
    """A computed elapsed time or duration came out negative and was clamped to zero."""
