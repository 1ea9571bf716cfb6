"""Sync Orchestrator - bring districts and schools up to date.

Per scope the orchestrator moves through
`idle -> lock acquired -> full | incremental | reconciliation -> reporting`:

- A school with no successful run yet, or with its full-sync flag set,
  runs FULL: fetch everything, then reconcile.
- Otherwise it runs INCREMENTAL: apply change-feed events after its
  cursor, committing the cursor together with each batch.
- A manual reconciliation request runs RECONCILIATION (a full fetch and
  reconcile even without the flag).

District runs lock the district scope, then fan out over its schools
with bounded concurrency; each school locks its own scope. One school's
failure never aborts its siblings, but an authentication failure aborts
the whole triggered run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roster_sync.clever.client import CleverClient
from roster_sync.clever.events import ChangeFeedReader, ObjectType
from roster_sync.clever.exceptions import AuthenticationFailedError, CleverClientError
from roster_sync.config import Settings, get_settings
from roster_sync.db.models import District, RunStatus, School, SyncMode, TriggerSource
from roster_sync.db.repositories import (
    DistrictRepository,
    SchoolRepository,
    SyncRunRepository,
)
from roster_sync.db.types import utc_now
from roster_sync.logging import bind_school, bind_scope, get_logger

from .exceptions import LockContentionError, LockLostError, RecordValidationError
from .lock import SyncLock
from .reconciler import FullRecordSet, Reconciler
from .results import SchoolSyncResult, SyncSummary
from .upserter import Upserter

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Who started a sync and how."""

    trigger: TriggerSource = TriggerSource.MANUAL
    initiated_by: str | None = None

    @property
    def initiator(self) -> str:
        return self.initiated_by or self.trigger.value


class SyncOrchestrator:
    """Coordinates locking, mode selection, fan-out and run history.

    Each school is synced in its own session from `session_factory`;
    run history and locks use short sessions of their own, so a failed
    school transaction never loses its SyncRun record.

    Usage:
        async with TokenManager() as tokens, CleverClient(tokens) as client:
            orchestrator = SyncOrchestrator(get_session_factory(), client)
            summary = await orchestrator.sync_district(3)
            print(summary.outcome, summary.failed_children)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: CleverClient,
        *,
        lock: SyncLock | None = None,
        settings: Settings | None = None,
        discover_schools: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            session_factory: Factory for per-school and history sessions
            client: Clever API client
            lock: SyncLock to use (defaults to one over session_factory)
            settings: Settings override (defaults to get_settings())
            discover_schools: Register new schools from the API before a
                district fan-out
            clock: Source of timestamps
        """
        self._session_factory = session_factory
        self._client = client
        self._settings = settings or get_settings()
        self._lock = lock or SyncLock(session_factory)
        self._discover_schools = discover_schools
        self._clock = clock

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def sync_all(
        self,
        *,
        force_full: bool = False,
        context: RunContext | None = None,
    ) -> SyncSummary:
        """Sync every district, one after another.

        Stops early if authentication fails.
        """
        context = context or RunContext()
        start_time = time.monotonic()
        summary = self._new_summary("all")

        async with self._session_factory() as session:
            district_ids = [d.id for d in await DistrictRepository(session).list_all()]

        for district_id in district_ids:
            district_summary = await self.sync_district(district_id, force_full=force_full, context=context)
            summary.merge(district_summary)
            if district_summary.aborted:
                logger.error("Authentication failed; skipping remaining districts")
                break

        summary.duration_seconds = time.monotonic() - start_time
        return summary

    async def sync_district(
        self,
        district_id: int,
        *,
        force_full: bool = False,
        context: RunContext | None = None,
    ) -> SyncSummary:
        """Sync all active schools of a district.

        Returns:
            SyncSummary with one result per school; lock contention and
            authentication failure are reported in `errors`
        """
        context = context or RunContext()
        start_time = time.monotonic()
        scope = f"district:{district_id}"
        summary = self._new_summary(scope)

        async with self._session_factory() as session:
            district = await DistrictRepository(session).get_by_id(district_id)
        if district is None:
            summary.errors.append(f"District {district_id} not found")
            return summary

        await self._lock.cleanup_expired()
        try:
            async with self._lock.hold(scope, initiated_by=context.initiator):
                await self._run_district(district, summary, context, force_full)
        except LockContentionError as e:
            bind_scope(scope).warning("Skipping district: {}", e)
            summary.errors.append(str(e))
            await self._record_skipped(scope, context, str(e), district_id=district_id)
        except LockLostError as e:
            bind_scope(scope).error("District run cancelled: {}", e)
            summary.errors.append(str(e))

        summary.duration_seconds = time.monotonic() - start_time
        return summary

    async def sync_school(
        self,
        school_id: int,
        *,
        force_full: bool = False,
        context: RunContext | None = None,
    ) -> SyncSummary:
        """Sync one school on its own (locks only the school scope)."""
        return await self._standalone(school_id, context, force_full=force_full)

    async def reconcile_school(
        self,
        school_id: int,
        *,
        context: RunContext | None = None,
    ) -> SyncSummary:
        """Force a full fetch and reconciliation of one school."""
        return await self._standalone(school_id, context, mode=SyncMode.RECONCILIATION)

    # -------------------------------------------------------------------------
    # District level
    # -------------------------------------------------------------------------

    async def _run_district(
        self,
        district: District,
        summary: SyncSummary,
        context: RunContext,
        force_full: bool,
    ) -> None:
        log = bind_scope(district.scope)
        run_id = await self._start_run(district.scope, context, district_id=district.id)
        summary.run_ids.append(run_id)

        try:
            if self._discover_schools:
                await self._refresh_schools(district)

            async with self._session_factory() as session:
                school_ids = [
                    s.id for s in await SchoolRepository(session).list_for_district(district.id)
                ]
            log.info("Syncing {} schools (max {} at once)", len(school_ids), self._settings.sync.max_concurrent_schools)
            await self._fan_out(school_ids, summary, context, force_full, parent_run_id=run_id)
        except AuthenticationFailedError as e:
            log.error("Authentication failed, aborting run: {}", e)
            summary.errors.append(f"Authentication failed: {e}")
            summary.aborted = True
        except asyncio.CancelledError:
            await self._finish_parent(run_id, RunStatus.CANCELLED, summary, "Run cancelled")
            raise

        status = summary.run_status
        await self._finish_parent(run_id, status, summary, _error_text(summary))
        log.info(
            "District run {}: {} succeeded, {} failed",
            status.value,
            summary.successful_children,
            summary.failed_children,
        )

    async def _refresh_schools(self, district: District) -> None:
        """Register schools the API lists for the district."""
        log = bind_scope(district.scope)
        async with self._session_factory() as session:
            repo = SchoolRepository(session)
            try:
                async for source in self._client.iter_schools():
                    if source.district and source.district != district.external_id:
                        continue
                    school, created = await repo.get_or_create(district, source.id, source.name)
                    if created:
                        log.info("Registered new school {} ({})", school.name, school.external_id)
            except AuthenticationFailedError:
                raise
            except CleverClientError as e:
                log.warning("School discovery failed, using known schools: {}", e)
            await session.commit()

    async def _fan_out(
        self,
        school_ids: list[int],
        summary: SyncSummary,
        context: RunContext,
        force_full: bool,
        parent_run_id: int,
    ) -> None:
        """Sync schools with bounded concurrency and continue-on-error."""
        semaphore = asyncio.Semaphore(self._settings.sync.max_concurrent_schools)
        auth_errors: list[AuthenticationFailedError] = []
        tasks: list[asyncio.Task[None]] = []

        async def worker(school_id: int) -> None:
            async with semaphore:
                try:
                    result = await self._sync_locked_school(
                        school_id, context, force_full=force_full, parent_run_id=parent_run_id
                    )
                except AuthenticationFailedError as e:
                    auth_errors.append(e)
                    for task in tasks:
                        if task is not asyncio.current_task():
                            task.cancel()
                    return
            summary.school_results.append(result)

        tasks.extend(asyncio.create_task(worker(school_id)) for school_id in school_ids)
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if auth_errors:
            raise auth_errors[0]

    # -------------------------------------------------------------------------
    # School level
    # -------------------------------------------------------------------------

    async def _standalone(
        self,
        school_id: int,
        context: RunContext | None,
        *,
        force_full: bool = False,
        mode: SyncMode | None = None,
    ) -> SyncSummary:
        context = context or RunContext()
        start_time = time.monotonic()
        summary = self._new_summary(f"school:{school_id}")

        await self._lock.cleanup_expired()
        try:
            result = await self._sync_locked_school(school_id, context, force_full=force_full, mode=mode)
        except AuthenticationFailedError as e:
            summary.errors.append(f"Authentication failed: {e}")
            summary.aborted = True
        else:
            summary.school_results.append(result)
            if result.run_id is not None:
                summary.run_ids.append(result.run_id)

        summary.duration_seconds = time.monotonic() - start_time
        return summary

    async def _sync_locked_school(
        self,
        school_id: int,
        context: RunContext,
        *,
        force_full: bool = False,
        mode: SyncMode | None = None,
        parent_run_id: int | None = None,
    ) -> SchoolSyncResult:
        """Lock a school and sync it.

        Never raises for school-level failures; those end up in the
        result. Authentication failure and cancellation propagate.
        """
        scope = f"school:{school_id}"
        result = SchoolSyncResult(school_id=school_id, external_id="", started_at=self._clock())
        try:
            async with self._lock.hold(scope, initiated_by=context.initiator):
                await self._run_school(school_id, result, context, force_full, mode, parent_run_id)
        except LockContentionError as e:
            bind_scope(scope).warning("Skipping school: {}", e)
            result.status = RunStatus.SKIPPED
            result.error = str(e)
            result.run_id = await self._record_skipped(
                scope, context, str(e), school_id=school_id, parent_run_id=parent_run_id
            )
        except LockLostError as e:
            bind_scope(scope).error("School run cancelled: {}", e)
            result.status = RunStatus.CANCELLED
            result.error = str(e)
        result.completed_at = self._clock()
        return result

    async def _run_school(
        self,
        school_id: int,
        result: SchoolSyncResult,
        context: RunContext,
        force_full: bool,
        mode: SyncMode | None,
        parent_run_id: int | None,
    ) -> None:
        async with self._session_factory() as session:
            schools = SchoolRepository(session)
            school = await schools.get_by_id(school_id)
            if school is None:
                result.status = RunStatus.FAILED
                result.error = f"School {school_id} not found"
                return
            district = await session.get(District, school.district_id)
            district_external_id = district.external_id if district else None

            result.external_id = school.external_id
            result.name = school.name
            log = bind_school(school.id, school.external_id)

            chosen = mode or await self._select_mode(session, school, force_full)
            result.mode = chosen
            run_id = await self._start_run(
                school.scope,
                context,
                mode=chosen,
                district_id=school.district_id,
                school_id=school.id,
                parent_run_id=parent_run_id,
            )
            result.run_id = run_id
            log.info("Starting {} sync", chosen.value)

            try:
                if chosen is SyncMode.INCREMENTAL:
                    await self._run_incremental(session, school, district_external_id, result)
                else:
                    await self._run_full(session, school, district_external_id, result)
            except asyncio.CancelledError:
                await session.rollback()
                result.status = RunStatus.CANCELLED
                result.error = "Run cancelled"
                await self._finish_school(run_id, result)
                raise
            except AuthenticationFailedError as e:
                await session.rollback()
                result.status = RunStatus.FAILED
                result.error = f"Authentication failed: {e}"
                await self._finish_school(run_id, result)
                raise
            except Exception as e:
                # Continue-on-error: the failure stays with this school
                log.exception("{} sync failed: {}", chosen.value.capitalize(), e)
                await session.rollback()
                if chosen is not SyncMode.INCREMENTAL:
                    await self._keep_full_sync_flag(session, school_id)
                result.status = RunStatus.FAILED
                result.error = str(e)
                await self._finish_school(run_id, result)
                return

            result.status = RunStatus.SUCCEEDED
            await self._finish_school(run_id, result)
            log.info(
                "{} sync done: processed={}, created={}, updated={}, deleted={}, failed={}",
                chosen.value.capitalize(),
                result.processed,
                result.created,
                result.updated,
                result.deleted,
                result.failed,
            )

    async def _select_mode(self, session: AsyncSession, school: School, force_full: bool) -> SyncMode:
        if force_full or school.requires_full_sync:
            return SyncMode.FULL
        if await SyncRunRepository(session).last_successful(school.id) is None:
            return SyncMode.FULL
        return SyncMode.INCREMENTAL

    async def _run_incremental(
        self,
        session: AsyncSession,
        school: School,
        district_external_id: str | None,
        result: SchoolSyncResult,
    ) -> None:
        """Apply change events after the school's cursor.

        The cursor is advanced and committed together with each batch of
        applied events, never ahead of them. A failure rolls back the
        uncommitted batch, so the next run replays it. Counters cover
        committed batches only.
        """
        log = bind_school(school.id, school.external_id)
        schools = SchoolRepository(session)
        upserter = Upserter(session, school, district_external_id=district_external_id, clock=self._clock)
        reader = ChangeFeedReader(self._client, max_pages=self._settings.sync.max_event_pages)
        batch_size = self._settings.sync.commit_batch_size

        last_applied = school.event_cursor
        result.cursor = last_applied
        # Counts of the open batch; folded into result only once committed
        batch = SchoolSyncResult(school_id=school.id, external_id=school.external_id)

        async for event in reader.read_events_since(school.scope, last_applied):
            try:
                batch.record(await upserter.apply_event(event))
            except RecordValidationError as e:
                batch.record_invalid()
                log.warning("Rejected event {}: {}", event.id, e)
            last_applied = event.id

            if batch.processed >= batch_size:
                await self._commit_batch(session, schools, school, last_applied, batch, result)
                batch = SchoolSyncResult(school_id=school.id, external_id=school.external_id)

        if batch.processed and last_applied is not None:
            await self._commit_batch(session, schools, school, last_applied, batch, result)
        result.failed += reader.skipped_malformed

    async def _commit_batch(
        self,
        session: AsyncSession,
        schools: SchoolRepository,
        school: School,
        cursor: str,
        batch: SchoolSyncResult,
        result: SchoolSyncResult,
    ) -> None:
        await schools.advance_cursor(school, cursor)
        await session.commit()
        result.absorb(batch)
        result.cursor = cursor

    async def _run_full(
        self,
        session: AsyncSession,
        school: School,
        district_external_id: str | None,
        result: SchoolSyncResult,
    ) -> None:
        """Fetch everything for the school, then reconcile."""
        reader = ChangeFeedReader(self._client)
        baseline_cursor = await reader.latest_event_id() or school.event_cursor
        record_set = await self._fetch_full(school)

        upserter = Upserter(session, school, district_external_id=district_external_id, clock=self._clock)
        reconciler = Reconciler(session, upserter, clock=self._clock)
        reconciliation = await reconciler.reconcile(school, record_set, baseline_cursor=baseline_cursor)

        result.reconciliation = reconciliation
        result.processed = len(record_set)
        result.failed = reconciliation.invalid
        result.created = reconciliation.created
        result.updated = reconciliation.reactivated - reconciliation.created
        result.deleted = reconciliation.deleted
        result.skipped = result.processed - result.failed - reconciliation.reactivated
        result.cursor = baseline_cursor

    async def _fetch_full(self, school: School) -> FullRecordSet:
        """Read every record of a school from the API."""
        record_set = FullRecordSet()
        external_id = school.external_id
        sources = (
            (ObjectType.TERM, lambda: self._client.iter_terms()),
            (ObjectType.COURSE, lambda: self._client.iter_courses(external_id)),
            (ObjectType.TEACHER, lambda: self._client.iter_teachers(external_id)),
            (ObjectType.STUDENT, lambda: self._client.iter_students(external_id)),
            (ObjectType.SECTION, lambda: self._client.iter_sections(external_id)),
        )
        for object_type, source in sources:
            async for record in source():
                record_set.add(object_type, record)
        bind_school(school.id, external_id).debug("Fetched {} records", len(record_set))
        return record_set

    async def _keep_full_sync_flag(self, session: AsyncSession, school_id: int) -> None:
        schools = SchoolRepository(session)
        school = await schools.get_by_id(school_id)
        if school is not None and not school.requires_full_sync:
            await schools.flag_full_sync(school)
            await session.commit()

    # -------------------------------------------------------------------------
    # Run history
    # -------------------------------------------------------------------------

    def _new_summary(self, scope: str) -> SyncSummary:
        return SyncSummary(
            scope=scope,
            require_all_children_success=self._settings.sync.require_all_children_success,
        )

    async def _start_run(
        self,
        scope: str,
        context: RunContext,
        *,
        mode: SyncMode | None = None,
        district_id: int | None = None,
        school_id: int | None = None,
        parent_run_id: int | None = None,
    ) -> int:
        async with self._session_factory() as session:
            run = await SyncRunRepository(session).start_run(
                scope,
                mode=mode,
                trigger=context.trigger,
                initiated_by=context.initiated_by,
                district_id=district_id,
                school_id=school_id,
                parent_run_id=parent_run_id,
            )
            await session.commit()
            return run.id

    async def _finish_school(self, run_id: int, result: SchoolSyncResult) -> None:
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            run = await repo.get_by_id(run_id)
            if run is None:
                return
            await repo.finish_run(
                run,
                result.status,
                processed=result.processed,
                failed=result.failed,
                created=result.created,
                updated=result.updated,
                deleted=result.deleted,
                last_cursor=result.cursor,
                error_message=result.error,
            )
            await session.commit()

    async def _finish_parent(
        self,
        run_id: int,
        status: RunStatus,
        summary: SyncSummary,
        error: str | None,
    ) -> None:
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            run = await repo.get_by_id(run_id)
            if run is None or run.status.is_terminal:
                return
            await repo.finish_run(
                run,
                status,
                processed=summary.total_processed,
                failed=summary.total_failed,
                created=summary.total_created,
                updated=summary.total_updated,
                deleted=summary.total_deleted,
                error_message=error,
            )
            await session.commit()

    async def _record_skipped(
        self,
        scope: str,
        context: RunContext,
        reason: str,
        *,
        district_id: int | None = None,
        school_id: int | None = None,
        parent_run_id: int | None = None,
    ) -> int:
        """Record an attempt refused by lock contention."""
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            run = await repo.start_run(
                scope,
                trigger=context.trigger,
                initiated_by=context.initiated_by,
                district_id=district_id,
                school_id=school_id,
                parent_run_id=parent_run_id,
            )
            await repo.finish_run(run, RunStatus.SKIPPED, error_message=reason)
            await session.commit()
            return run.id


def _error_text(summary: SyncSummary) -> str | None:
    """Error message for a parent run: scope errors plus failed schools."""
    parts = list(summary.errors)
    parts.extend(
        f"{r.external_id or r.school_id}: {r.error}"
        for r in summary.school_results
        if not r.succeeded and r.error
    )
    return "; ".join(parts) or None
