"""Sync engine - Clever to database synchronization.

Services:
- Upserter: idempotent create-or-update and soft delete per school
- Reconciler: three-phase full-refresh reconciliation
- SyncLock: database-backed per-scope mutual exclusion
- SyncOrchestrator: mode selection, locking, fan-out and run history
- ManualTrigger / ScheduledTrigger: entry points returning structured outcomes
"""

from .enums import ApplyAction, ManualScope, OutputFormat, SyncOutcome
from .exceptions import (
    LockContentionError,
    LockLostError,
    ReconciliationIncompleteError,
    RecordValidationError,
    SyncError,
)
from .lock import LockAcquisition, SyncLock, new_holder_id
from .orchestrator import RunContext, SyncOrchestrator
from .reconciler import FullRecordSet, Reconciler
from .results import ApplyResult, ReconciliationResult, SchoolSyncResult, SyncSummary
from .schedules import ScheduleService
from .triggers import (
    ManualSyncRequest,
    ManualSyncResponse,
    ManualTrigger,
    ScheduledTrigger,
    SyncStats,
)
from .upserter import BINDINGS, Upserter

__all__ = [
    # Orchestration
    "RunContext",
    "SyncOrchestrator",
    # Triggers
    "ManualSyncRequest",
    "ManualSyncResponse",
    "ManualTrigger",
    "ScheduleService",
    "ScheduledTrigger",
    "SyncStats",
    # Apply / reconcile
    "BINDINGS",
    "FullRecordSet",
    "Reconciler",
    "Upserter",
    # Locking
    "LockAcquisition",
    "SyncLock",
    "new_holder_id",
    # Results and enums
    "ApplyAction",
    "ApplyResult",
    "ManualScope",
    "OutputFormat",
    "ReconciliationResult",
    "SchoolSyncResult",
    "SyncOutcome",
    "SyncSummary",
    # Exceptions
    "LockContentionError",
    "LockLostError",
    "ReconciliationIncompleteError",
    "RecordValidationError",
    "SyncError",
]
