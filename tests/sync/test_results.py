"""Tests for sync result objects."""

from datetime import timedelta

import pytest

from roster_sync.db.models import RunStatus, SyncMode
from roster_sync.sync import ApplyAction, ApplyResult, SchoolSyncResult, SyncOutcome, SyncSummary
from roster_sync.sync.results import ReconciliationResult
from tests.conftest import SEP_01


def _school(n: int, status: RunStatus = RunStatus.SUCCEEDED, **counts) -> SchoolSyncResult:
    return SchoolSyncResult(school_id=n, external_id=f"s-{n}", status=status, **counts)


class TestApplyResult:
    def test_wrote(self):
        assert ApplyResult(ApplyAction.CREATED, "student", "stu-1", 1).wrote
        assert ApplyResult(ApplyAction.DEACTIVATED, "student", "stu-1", 1).wrote

    def test_skipped(self):
        result = ApplyResult.skipped("term", "other tenant", "t-1")

        assert not result.wrote
        assert result.action is ApplyAction.SKIPPED
        assert result.reason == "other tenant"
        assert result.record_id is None


class TestSchoolSyncResult:
    def test_record_counts_by_action(self):
        result = _school(1)
        for action in (
            ApplyAction.CREATED,
            ApplyAction.CREATED,
            ApplyAction.UPDATED,
            ApplyAction.DEACTIVATED,
            ApplyAction.SKIPPED,
        ):
            result.record(ApplyResult(action, "student"))
        result.record_invalid()

        assert (result.processed, result.created, result.updated) == (6, 2, 1)
        assert (result.deleted, result.skipped, result.failed) == (1, 1, 1)

    def test_absorb_adds_batch_counters(self):
        result = _school(1, created=1, failed=1, processed=2)
        batch = _school(1)
        batch.record(ApplyResult(ApplyAction.UPDATED, "student"))
        batch.record(ApplyResult(ApplyAction.DEACTIVATED, "student"))
        batch.record_invalid()

        result.absorb(batch)

        assert (result.processed, result.created, result.updated) == (5, 1, 1)
        assert (result.deleted, result.failed, result.skipped) == (1, 2, 0)

    def test_duration(self):
        result = _school(1, started_at=SEP_01, completed_at=SEP_01 + timedelta(seconds=90))
        assert result.duration_seconds == 90.0
        assert _school(2).duration_seconds == 0.0

    def test_to_dict(self):
        result = _school(1, mode=SyncMode.FULL, created=3, cursor="evt-9")
        result.reconciliation = ReconciliationResult(marked_inactive=4, created=3)

        data = result.to_dict()

        assert data["mode"] == "full"
        assert data["status"] == "succeeded"
        assert data["cursor"] == "evt-9"
        assert data["reconciliation"]["marked_inactive"] == 4
        assert "error" not in data

    def test_to_dict_includes_error(self):
        data = _school(1, RunStatus.SKIPPED, error="Scope school:1 is locked").to_dict()

        assert data["mode"] is None
        assert data["error"] == "Scope school:1 is locked"


class TestSyncSummary:
    @pytest.mark.parametrize(
        ("statuses", "errors", "expected"),
        [
            ([], [], SyncOutcome.SUCCESS),
            ([], ["auth failed"], SyncOutcome.FAILURE),
            ([RunStatus.SUCCEEDED, RunStatus.SUCCEEDED], [], SyncOutcome.SUCCESS),
            ([RunStatus.SUCCEEDED, RunStatus.FAILED], [], SyncOutcome.PARTIAL),
            ([RunStatus.SUCCEEDED, RunStatus.SKIPPED], [], SyncOutcome.PARTIAL),
            ([RunStatus.FAILED, RunStatus.CANCELLED], [], SyncOutcome.FAILURE),
            ([RunStatus.SUCCEEDED], ["discovery failed"], SyncOutcome.PARTIAL),
        ],
    )
    def test_outcome(self, statuses, errors, expected):
        summary = SyncSummary(
            scope="district:1",
            school_results=[_school(n, status) for n, status in enumerate(statuses)],
            errors=errors,
        )

        assert summary.outcome is expected

    def test_require_all_children_success(self):
        summary = SyncSummary(
            scope="district:1",
            school_results=[_school(1), _school(2, RunStatus.FAILED)],
            require_all_children_success=True,
        )

        assert summary.outcome is SyncOutcome.FAILURE
        assert summary.run_status is RunStatus.FAILED

    def test_aborted_is_failure(self):
        summary = SyncSummary(
            scope="district:1",
            school_results=[_school(1), _school(2, RunStatus.CANCELLED)],
            aborted=True,
        )

        assert summary.outcome is SyncOutcome.FAILURE

    def test_run_status(self):
        partial = SyncSummary(scope="district:1", school_results=[_school(1), _school(2, RunStatus.FAILED)])

        assert partial.run_status is RunStatus.PARTIALLY_SUCCEEDED
        assert SyncSummary(scope="all").run_status is RunStatus.SUCCEEDED

    def test_merge(self):
        summary = SyncSummary(scope="all", school_results=[_school(1, created=2)], run_ids=[1])
        other = SyncSummary(
            scope="district:2",
            school_results=[_school(2, RunStatus.FAILED)],
            errors=["boom"],
            run_ids=[2],
            aborted=True,
        )

        summary.merge(other)

        assert [r.school_id for r in summary.school_results] == [1, 2]
        assert summary.errors == ["boom"]
        assert summary.run_ids == [1, 2]
        assert summary.aborted

    def test_to_dict(self):
        summary = SyncSummary(
            scope="district:1",
            school_results=[_school(1, created=2, updated=1), _school(2, RunStatus.FAILED, error="x")],
        )

        data = summary.to_dict()

        assert data["outcome"] == "partial"
        assert data["summary"]["total_schools"] == 2
        assert data["summary"]["successful_children"] == 1
        assert data["summary"]["created"] == 2
        assert data["summary"]["updated"] == 1
        assert len(data["schools"]) == 2
