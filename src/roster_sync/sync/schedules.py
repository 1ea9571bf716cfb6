"""Schedule evaluation in each district's local time zone."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roster_sync.config import get_settings
from roster_sync.db.models import SyncSchedule
from roster_sync.db.repositories import SyncScheduleRepository
from roster_sync.db.types import utc_now
from roster_sync.logging import get_logger

logger = get_logger(__name__)


def district_zone(name: str | None) -> ZoneInfo:
    """ZoneInfo for an IANA name, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone {!r}, using UTC", name)
        return ZoneInfo("UTC")


def last_occurrence(schedule: SyncSchedule, now: datetime, zone: ZoneInfo) -> datetime:
    """Most recent local wall-clock time of the schedule at or before `now`.

    Weekday filters are not applied here.
    """
    local_now = now.astimezone(zone)
    candidate = local_now.replace(
        hour=schedule.local_hour,
        minute=schedule.local_minute,
        second=0,
        microsecond=0,
    )
    if candidate > local_now:
        candidate = (candidate - timedelta(days=1)).replace(
            hour=schedule.local_hour, minute=schedule.local_minute
        )
    return candidate


def is_due(
    schedule: SyncSchedule,
    now: datetime,
    zone: ZoneInfo,
    window: timedelta,
) -> bool:
    """True if the schedule's local time fell within `window` before `now`,
    on an allowed weekday, and it has not fired for that occurrence yet.
    """
    if not schedule.is_enabled:
        return False
    occurrence = last_occurrence(schedule, now, zone)
    if not schedule.should_run_on(occurrence.weekday()):
        return False
    elapsed = now.astimezone(UTC) - occurrence.astimezone(UTC)
    if elapsed >= window:
        return False
    last = schedule.last_triggered_at
    return last is None or last.astimezone(UTC) < occurrence.astimezone(UTC)


def next_run_time(schedule: SyncSchedule, now: datetime, zone: ZoneInfo) -> datetime | None:
    """Next UTC time the schedule will fire after `now`, or None if disabled."""
    if not schedule.is_enabled:
        return None
    local_now = now.astimezone(zone)
    for offset in range(8):
        day = local_now + timedelta(days=offset)
        candidate = day.replace(
            hour=schedule.local_hour,
            minute=schedule.local_minute,
            second=0,
            microsecond=0,
        )
        if candidate > local_now and schedule.should_run_on(candidate.weekday()):
            return candidate.astimezone(UTC)
    return None


class ScheduleService:
    """Read and update sync schedules.

    Usage:
        service = ScheduleService(get_session_factory())
        for schedule in await service.get_due_schedules():
            await service.mark_triggered(schedule.id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def get_due_schedules(
        self,
        now: datetime | None = None,
        window_minutes: int | None = None,
    ) -> list[SyncSchedule]:
        """Enabled schedules due at `now`, with their district loaded.

        Args:
            now: Evaluation time (defaults to the clock)
            window_minutes: Due window (defaults to settings.schedule.window_minutes)

        Returns:
            Due schedules, detached from their session
        """
        now = now or self._clock()
        window = timedelta(minutes=window_minutes or get_settings().schedule.window_minutes)
        async with self._session_factory() as session:
            schedules = await SyncScheduleRepository(session).list_enabled()

        due = [s for s in schedules if is_due(s, now, district_zone(s.district.time_zone), window)]
        if due:
            logger.info("{} schedule(s) due", len(due))
        return due

    async def mark_triggered(self, schedule_id: int, when: datetime | None = None) -> None:
        """Record that a schedule fired."""
        async with self._session_factory() as session:
            repo = SyncScheduleRepository(session)
            schedule = await repo.get_by_id(schedule_id)
            if schedule is None:
                return
            await repo.mark_triggered(schedule, when or self._clock())
            await session.commit()

    async def next_run_times(self, now: datetime | None = None) -> list[tuple[SyncSchedule, datetime | None]]:
        """Every enabled schedule with its next fire time."""
        now = now or self._clock()
        async with self._session_factory() as session:
            schedules = await SyncScheduleRepository(session).list_enabled()
        return [(s, next_run_time(s, now, district_zone(s.district.time_zone))) for s in schedules]
