"""Manual and scheduled entry points into the orchestrator.

Both are independent callers of the same SyncOrchestrator and share its
SyncLock; whichever claims a scope first runs it and the other skips.
Neither raises to its caller: every request ends in a structured
outcome.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, Field, ValidationError, model_validator

from roster_sync.config import get_settings
from roster_sync.db.models import SyncMode, TriggerSource
from roster_sync.db.types import utc_now
from roster_sync.logging import get_logger

from .enums import ManualScope, SyncOutcome
from .orchestrator import RunContext, SyncOrchestrator
from .results import SyncSummary
from .schedules import ScheduleService

logger = get_logger(__name__)


# ------------------------------------------------------------------------------
# Manual trigger
# ------------------------------------------------------------------------------
class ManualSyncRequest(BaseModel):
    """Request to sync a school, a district or everything."""

    scope: ManualScope = Field(description="What to sync")
    id: int | None = Field(default=None, description="School or district id (not used for 'all')")
    force_full_sync: bool = Field(default=False, description="Full fetch + reconcile even if not flagged")
    mode: SyncMode | None = Field(default=None, description="Explicit mode; 'reconciliation' needs a school")

    @model_validator(mode="after")
    def _check_target(self) -> Self:
        if self.scope is not ManualScope.ALL and self.id is None:
            raise ValueError(f"scope '{self.scope.value}' requires an id")
        if self.mode is SyncMode.RECONCILIATION and self.scope is not ManualScope.SCHOOL:
            raise ValueError("reconciliation can only be requested for a school")
        return self

    @property
    def wants_full(self) -> bool:
        return self.force_full_sync or self.mode is SyncMode.FULL


class SyncStats(BaseModel):
    """Aggregate counts of a triggered sync."""

    processed: int = 0
    failed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    successful_children: int = 0
    failed_children: int = 0
    duration_seconds: float = 0.0


class ManualSyncResponse(BaseModel):
    """Structured outcome returned to the manual caller."""

    success: bool
    outcome: SyncOutcome
    scope: str
    message: str
    stats: SyncStats = Field(default_factory=SyncStats)
    schools: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: SyncSummary) -> ManualSyncResponse:
        outcome = summary.outcome
        if outcome is SyncOutcome.SUCCESS:
            message = f"Synced {summary.successful_children} school(s)"
        elif outcome is SyncOutcome.PARTIAL:
            message = (
                f"Synced {summary.successful_children} school(s), "
                f"{summary.failed_children} failed"
            )
        else:
            message = summary.errors[0] if summary.errors else "Sync failed"
        return cls(
            success=summary.success,
            outcome=outcome,
            scope=summary.scope,
            message=message,
            stats=SyncStats(
                processed=summary.total_processed,
                failed=summary.total_failed,
                created=summary.total_created,
                updated=summary.total_updated,
                deleted=summary.total_deleted,
                successful_children=summary.successful_children,
                failed_children=summary.failed_children,
                duration_seconds=round(summary.duration_seconds, 2),
            ),
            schools=[r.to_dict() for r in summary.school_results],
            errors=list(summary.errors),
        )

    @classmethod
    def failure(cls, scope: str, message: str) -> ManualSyncResponse:
        return cls(
            success=False,
            outcome=SyncOutcome.FAILURE,
            scope=scope,
            message=message,
            errors=[message],
        )


class ManualTrigger:
    """On-demand sync entry point.

    Usage:
        trigger = ManualTrigger(orchestrator)
        response = await trigger.trigger({"scope": "school", "id": 4}, initiated_by="admin@example.org")
        if not response.success:
            print(response.errors)
    """

    def __init__(self, orchestrator: SyncOrchestrator, *, source: TriggerSource = TriggerSource.MANUAL) -> None:
        self._orchestrator = orchestrator
        self._source = source

    async def trigger(
        self,
        request: ManualSyncRequest | dict[str, Any],
        initiated_by: str | None = None,
    ) -> ManualSyncResponse:
        """Validate and run a sync request.

        Returns:
            ManualSyncResponse; invalid requests and unexpected errors are
            reported as failures rather than raised
        """
        if not isinstance(request, ManualSyncRequest):
            try:
                request = ManualSyncRequest.model_validate(request)
            except ValidationError as e:
                first = e.errors()[0]
                return ManualSyncResponse.failure("invalid", f"Invalid request: {first.get('msg')}")

        scope = request.scope.value if request.id is None else f"{request.scope.value}:{request.id}"
        context = RunContext(trigger=self._source, initiated_by=initiated_by)
        logger.info("Manual sync requested for {} by {}", scope, context.initiator)

        try:
            summary = await self._dispatch(request, context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Manual sync of {} failed: {}", scope, e)
            return ManualSyncResponse.failure(scope, f"Sync failed: {e}")

        return ManualSyncResponse.from_summary(summary)

    async def _dispatch(self, request: ManualSyncRequest, context: RunContext) -> SyncSummary:
        orchestrator = self._orchestrator
        if request.scope is ManualScope.ALL:
            return await orchestrator.sync_all(force_full=request.wants_full, context=context)
        assert request.id is not None
        if request.scope is ManualScope.DISTRICT:
            return await orchestrator.sync_district(request.id, force_full=request.wants_full, context=context)
        if request.mode is SyncMode.RECONCILIATION:
            return await orchestrator.reconcile_school(request.id, context=context)
        return await orchestrator.sync_school(request.id, force_full=request.wants_full, context=context)


# ------------------------------------------------------------------------------
# Scheduled trigger
# ------------------------------------------------------------------------------
class ScheduledTrigger:
    """Periodic entry point: sync each district whose schedule is due.

    Usage:
        trigger = ScheduledTrigger(orchestrator, ScheduleService(factory))
        await trigger.run_forever(stop_event=stop)
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        schedules: ScheduleService,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orchestrator = orchestrator
        self._schedules = schedules
        self._clock = clock

    async def run_once(self, now: datetime | None = None) -> list[SyncSummary]:
        """Process every schedule due at `now`.

        Each due schedule is marked triggered before its district runs,
        so it fires at most once per occurrence. A failing district is
        logged and does not stop the others.

        Returns:
            One summary per due schedule
        """
        now = now or self._clock()
        summaries: list[SyncSummary] = []
        for schedule in await self._schedules.get_due_schedules(now):
            await self._schedules.mark_triggered(schedule.id, now)
            context = RunContext(
                trigger=TriggerSource.SCHEDULED,
                initiated_by=f"schedule:{schedule.name}",
            )
            logger.info(
                "Schedule '{}' due for district {} ({} {})",
                schedule.name,
                schedule.district_id,
                schedule.display_time,
                schedule.display_days,
            )
            try:
                summary = await self._orchestrator.sync_district(schedule.district_id, context=context)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Scheduled sync of district {} failed: {}", schedule.district_id, e)
                summary = SyncSummary(scope=f"district:{schedule.district_id}", errors=[str(e)])
            logger.info("Scheduled sync of district {}: {}", schedule.district_id, summary.outcome.value)
            summaries.append(summary)
        return summaries

    async def run_forever(
        self,
        interval: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Poll for due schedules until `stop_event` is set."""
        interval = interval or get_settings().schedule.poll_interval_seconds
        stop_event = stop_event or asyncio.Event()
        logger.info("Scheduler started (every {}s)", interval)
        while not stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                continue
        logger.info("Scheduler stopped")
