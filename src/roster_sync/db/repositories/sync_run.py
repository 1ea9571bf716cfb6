"""Repository for SyncRun history."""

from datetime import datetime

from sqlalchemy import select

from roster_sync.db.models import RunStatus, SyncMode, SyncRun, TriggerSource
from roster_sync.db.types import utc_now

from .base import BaseRepository


class RunAlreadyFinishedError(RuntimeError):
    """Raised when code tries to modify a run whose status is terminal."""


class SyncRunRepository(BaseRepository[SyncRun]):
    """Repository for the append-only sync history.

    Manages the lifecycle of a run:
    - Opening a run when a sync starts
    - Closing it exactly once with counters and a terminal status
    - Querying history by scope, mode and time window
    """

    model = SyncRun

    # -------------------------------------------------------------------------
    # Create/Update Methods
    # -------------------------------------------------------------------------

    async def start_run(
        self,
        scope: str,
        *,
        mode: SyncMode | None = None,
        trigger: TriggerSource = TriggerSource.MANUAL,
        initiated_by: str | None = None,
        district_id: int | None = None,
        school_id: int | None = None,
        parent_run_id: int | None = None,
    ) -> SyncRun:
        """Open a run in RUNNING status.

        Returns:
            The flushed run (id assigned)
        """
        run = SyncRun(
            scope=scope,
            mode=mode,
            trigger=trigger,
            initiated_by=initiated_by,
            district_id=district_id,
            school_id=school_id,
            parent_run_id=parent_run_id,
            status=RunStatus.RUNNING,
            started_at=utc_now(),
        )
        self.add(run)
        await self.flush()
        return run

    async def finish_run(
        self,
        run: SyncRun,
        status: RunStatus,
        *,
        processed: int = 0,
        failed: int = 0,
        created: int = 0,
        updated: int = 0,
        deleted: int = 0,
        last_cursor: str | None = None,
        error_message: str | None = None,
        mode: SyncMode | None = None,
    ) -> SyncRun:
        """Close a run with its final counters.

        Args:
            run: The open run
            status: Terminal status
            processed / failed / created / updated / deleted: Record counters
            last_cursor: Change-feed position reached (incremental runs)
            error_message: Failure details, if any
            mode: Mode actually used, when decided after the run opened

        Returns:
            The closed run

        Raises:
            RunAlreadyFinishedError: If the run is already terminal
            ValueError: If status is not terminal
        """
        if run.status.is_terminal:
            raise RunAlreadyFinishedError(f"Run {run.id} already {run.status.value}")
        if not status.is_terminal:
            raise ValueError("finish_run requires a terminal status")

        run.status = status
        run.ended_at = utc_now()
        run.records_processed = processed
        run.records_failed = failed
        run.records_created = created
        run.records_updated = updated
        run.records_deleted = deleted
        run.last_cursor = last_cursor
        run.error_message = error_message
        if mode is not None:
            run.mode = mode
        await self.flush()
        return run

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def recent(
        self,
        *,
        scope: str | None = None,
        mode: SyncMode | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
    ) -> list[SyncRun]:
        """Query history, newest first.

        Args:
            scope: Filter by scope key (e.g. "school:4")
            mode: Filter by sync mode
            since: Only runs started at or after this time
            until: Only runs started before this time
            limit: Maximum runs to return

        Returns:
            List of runs
        """
        stmt = select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit)
        if scope is not None:
            stmt = stmt.where(SyncRun.scope == scope)
        if mode is not None:
            stmt = stmt.where(SyncRun.mode == mode)
        if since is not None:
            stmt = stmt.where(SyncRun.started_at >= since)
        if until is not None:
            stmt = stmt.where(SyncRun.started_at < until)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def last_successful(self, school_id: int) -> SyncRun | None:
        """Most recent succeeded run of a school, if any."""
        stmt = (
            select(SyncRun)
            .where(
                SyncRun.school_id == school_id,
                SyncRun.status == RunStatus.SUCCEEDED,
                SyncRun.mode.is_not(None),
            )
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def children_of(self, parent_run_id: int) -> list[SyncRun]:
        """Child (per-school) runs of a district run."""
        stmt = select(SyncRun).where(SyncRun.parent_run_id == parent_run_id).order_by(SyncRun.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
