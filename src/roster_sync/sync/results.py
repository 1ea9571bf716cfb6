"""Result objects for sync operations.

Structured results give triggers, the CLI and the run history one
consistent view of what a sync did, including partial failures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from roster_sync.db.models import RunStatus, SyncMode

from .enums import ApplyAction, SyncOutcome


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying one record or change event."""

    action: ApplyAction
    """What was written."""

    object_type: str
    """Normalised object type (student, section, ...)."""

    external_id: str | None = None
    """Source id of the record, when known."""

    record_id: int | None = None
    """Local row id, when a row was touched."""

    reason: str | None = None
    """Why the record was skipped, if it was."""

    @property
    def wrote(self) -> bool:
        """True if a row was inserted or modified."""
        return self.action is not ApplyAction.SKIPPED

    @classmethod
    def skipped(
        cls,
        object_type: str,
        reason: str,
        external_id: str | None = None,
    ) -> ApplyResult:
        """Create a result for a record that was not applied."""
        return cls(ApplyAction.SKIPPED, object_type, external_id, reason=reason)


@dataclass
class ReconciliationResult:
    """Counts from one school's three-phase reconciliation."""

    marked_inactive: int = 0
    """Rows provisionally deactivated in phase one."""

    reactivated: int = 0
    """Rows confirmed by the full fetch (updated or created)."""

    created: int = 0
    """Rows that did not exist before the full fetch."""

    deleted: int = 0
    """Rows hard-deleted in phase three."""

    invalid: int = 0
    """Fetched records rejected by validation."""

    kept_invalid: int = 0
    """Existing rows kept unchanged because their fetched record was rejected."""

    deleted_ids: dict[str, list[str]] = field(default_factory=dict)
    """External ids removed, keyed by object type."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "marked_inactive": self.marked_inactive,
            "reactivated": self.reactivated,
            "created": self.created,
            "deleted": self.deleted,
            "invalid": self.invalid,
            "kept_invalid": self.kept_invalid,
        }


@dataclass
class SchoolSyncResult:
    """Result of syncing one school (a child scope)."""

    school_id: int
    """Local school id."""

    external_id: str
    """Source id of the school."""

    name: str = ""
    """School name for reports."""

    mode: SyncMode | None = None
    """Mode used; None if the school never got past lock acquisition."""

    status: RunStatus = RunStatus.RUNNING
    """Terminal status of the school's run."""

    processed: int = 0
    """Records or events examined."""

    failed: int = 0
    """Records rejected by validation."""

    created: int = 0
    """Rows inserted."""

    updated: int = 0
    """Rows updated or reactivated."""

    deleted: int = 0
    """Rows soft-deleted by events plus rows hard-deleted by reconciliation."""

    skipped: int = 0
    """Events skipped (unsupported type or another tenant)."""

    cursor: str | None = None
    """Change-feed cursor after the run."""

    error: str | None = None
    """Error message for failed, skipped or cancelled schools."""

    run_id: int | None = None
    """SyncRun id recorded for this school."""

    started_at: datetime | None = None
    completed_at: datetime | None = None

    reconciliation: ReconciliationResult | None = None
    """Reconciliation details (full and reconciliation modes)."""

    @property
    def succeeded(self) -> bool:
        """True if the school finished without a fatal error."""
        return self.status is RunStatus.SUCCEEDED

    @property
    def duration_seconds(self) -> float:
        """Time taken to sync this school."""
        if self.started_at is None or self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def record(self, result: ApplyResult) -> None:
        """Count one apply outcome."""
        self.processed += 1
        if result.action is ApplyAction.CREATED:
            self.created += 1
        elif result.action is ApplyAction.UPDATED:
            self.updated += 1
        elif result.action is ApplyAction.DEACTIVATED:
            self.deleted += 1
        else:
            self.skipped += 1

    def record_invalid(self) -> None:
        """Count a record rejected by validation."""
        self.processed += 1
        self.failed += 1

    def absorb(self, batch: SchoolSyncResult) -> None:
        """Add the counters of a committed batch."""
        self.processed += batch.processed
        self.failed += batch.failed
        self.created += batch.created
        self.updated += batch.updated
        self.deleted += batch.deleted
        self.skipped += batch.skipped

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "school_id": self.school_id,
            "external_id": self.external_id,
            "name": self.name,
            "mode": self.mode.value if self.mode else None,
            "status": self.status.value,
            "processed": self.processed,
            "failed": self.failed,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "cursor": self.cursor,
            "run_id": self.run_id,
            "duration_seconds": round(self.duration_seconds, 2),
        }
        if self.reconciliation is not None:
            result["reconciliation"] = self.reconciliation.to_dict()
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class SyncSummary:
    """Aggregate result of a triggered sync (one or more schools).

    Aggregates results from all school syncs.
    """

    scope: str
    """Scope that was triggered ("all", "district:3", "school:9")."""

    school_results: list[SchoolSyncResult] = field(default_factory=list)
    """Per-school results, in completion order."""

    errors: list[str] = field(default_factory=list)
    """Scope-level errors (authentication, lock contention, ...)."""

    require_all_children_success: bool = False
    """Treat any school failure as a total failure."""

    run_ids: list[int] = field(default_factory=list)
    """Parent SyncRun ids recorded for this trigger."""

    aborted: bool = False
    """The run stopped early because authentication failed."""

    duration_seconds: float = 0.0
    """Total time taken."""

    @property
    def successful_children(self) -> int:
        """Schools that synced without a fatal error."""
        return sum(1 for r in self.school_results if r.succeeded)

    @property
    def failed_children(self) -> int:
        """Schools that failed, were cancelled or were skipped."""
        return sum(1 for r in self.school_results if not r.succeeded)

    @property
    def total_processed(self) -> int:
        return sum(r.processed for r in self.school_results)

    @property
    def total_failed(self) -> int:
        return sum(r.failed for r in self.school_results)

    @property
    def total_created(self) -> int:
        return sum(r.created for r in self.school_results)

    @property
    def total_updated(self) -> int:
        return sum(r.updated for r in self.school_results)

    @property
    def total_deleted(self) -> int:
        return sum(r.deleted for r in self.school_results)

    @property
    def outcome(self) -> SyncOutcome:
        """Full success, partial success or total failure.

        Scope-level errors with no school results are a failure. With
        school results, any failed school makes the outcome partial
        unless every school failed or all-children-success is required.
        """
        if not self.school_results:
            return SyncOutcome.FAILURE if self.errors else SyncOutcome.SUCCESS
        if self.failed_children == 0 and not self.errors:
            return SyncOutcome.SUCCESS
        if self.aborted or self.successful_children == 0 or self.require_all_children_success:
            return SyncOutcome.FAILURE
        return SyncOutcome.PARTIAL

    @property
    def success(self) -> bool:
        return self.outcome is SyncOutcome.SUCCESS

    @property
    def run_status(self) -> RunStatus:
        """Status recorded on the parent SyncRun."""
        return {
            SyncOutcome.SUCCESS: RunStatus.SUCCEEDED,
            SyncOutcome.PARTIAL: RunStatus.PARTIALLY_SUCCEEDED,
            SyncOutcome.FAILURE: RunStatus.FAILED,
        }[self.outcome]

    def merge(self, other: SyncSummary) -> None:
        """Fold another summary (e.g. one district of an all-districts run) into this one."""
        self.school_results.extend(other.school_results)
        self.errors.extend(other.errors)
        self.run_ids.extend(other.run_ids)
        self.aborted = self.aborted or other.aborted

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "scope": self.scope,
            "outcome": self.outcome.value,
            "summary": {
                "total_schools": len(self.school_results),
                "successful_children": self.successful_children,
                "failed_children": self.failed_children,
                "processed": self.total_processed,
                "failed": self.total_failed,
                "created": self.total_created,
                "updated": self.total_updated,
                "deleted": self.total_deleted,
                "duration_seconds": round(self.duration_seconds, 2),
            },
            "schools": [r.to_dict() for r in self.school_results],
            "errors": list(self.errors),
        }
