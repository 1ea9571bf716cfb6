"""Sync engine exceptions.

API-side failures live in `roster_sync.clever.exceptions`; these cover
the engine itself: bad records, lock conflicts and incomplete
reconciliation.
"""


class SyncError(Exception):
    """Base exception for sync engine errors."""

    pass


class RecordValidationError(SyncError):
    """Raised when a source record lacks a mandatory identifying field.

    The record is skipped and counted; the run continues.
    """

    def __init__(self, message: str, field: str | None = None, external_id: str | None = None) -> None:
        super().__init__(message)
        self.field = field
        self.external_id = external_id


class LockContentionError(SyncError):
    """Raised when a scope is already locked by another holder."""

    def __init__(self, scope: str, holder: str | None = None, initiated_by: str | None = None) -> None:
        detail = f"held by {holder}" if holder else "held elsewhere"
        if initiated_by:
            detail += f" (initiated by {initiated_by})"
        super().__init__(f"Scope {scope} is locked, {detail}")
        self.scope = scope
        self.holder = holder
        self.initiated_by = initiated_by


class LockLostError(SyncError):
    """Raised when a running sync no longer owns its scope's lock."""

    def __init__(self, scope: str, holder: str) -> None:
        super().__init__(f"Lock on {scope} was lost by {holder}")
        self.scope = scope
        self.holder = holder


class ReconciliationIncompleteError(SyncError):
    """Raised when reconciliation could not complete for a school.

    The transaction is rolled back and the school keeps its full-sync flag,
    so the next run retries reconciliation from scratch.
    """

    def __init__(self, school_id: int, phase: str, cause: BaseException | None = None) -> None:
        message = f"Reconciliation of school {school_id} failed during {phase}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.school_id = school_id
        self.phase = phase
