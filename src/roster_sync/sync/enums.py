"""Enums for sync operations."""

from enum import Enum


class ApplyAction(str, Enum):
    """Outcome of applying one record or event to a school's store."""

    CREATED = "created"
    """A new row was inserted."""

    UPDATED = "updated"
    """An existing row was written (possibly with no effective change)."""

    DEACTIVATED = "deactivated"
    """A deleted-event soft-deleted the row."""

    SKIPPED = "skipped"
    """Nothing was written (unsupported type, other tenant, invalid record)."""


class SyncOutcome(str, Enum):
    """Overall result reported to a trigger's caller."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class ManualScope(str, Enum):
    """Scope selector for manual sync requests."""

    SCHOOL = "school"
    DISTRICT = "district"
    ALL = "all"


class OutputFormat(str, Enum):
    """Output format for CLI commands."""

    TEXT = "text"
    """Human-readable text output."""

    JSON = "json"
    """Machine-readable JSON output."""
