"""
Analytics error taxonomy.

Divisions in the aggregation and scoring math are guarded and never raise, so
there is no computation error type.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for analytics pipeline failures."""


class InputError(AnalyticsError, ValueError):
    """A caller supplied a value the pipeline cannot interpret."""


class InvalidTimeRangeError(InputError):
    def __init__(self, value: object, allowed: tuple[str, ...]) -> None:
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Invalid time range {value!r}. Must be one of: {', '.join(allowed)}"
        )


class StorageError(AnalyticsError):
    """A query or upsert against the event or summary stores failed."""
