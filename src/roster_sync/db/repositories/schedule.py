"""Repository for SyncSchedule entities."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from roster_sync.db.models import SyncSchedule

from .base import BaseRepository


class SyncScheduleRepository(BaseRepository[SyncSchedule]):
    """Repository for per-district sync schedules."""

    model = SyncSchedule

    async def list_enabled(self) -> list[SyncSchedule]:
        """Enabled schedules with their district loaded."""
        stmt = (
            select(SyncSchedule)
            .where(SyncSchedule.is_enabled.is_(True))
            .options(selectinload(SyncSchedule.district))
            .order_by(SyncSchedule.district_id, SyncSchedule.local_hour, SyncSchedule.local_minute)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_district(self, district_id: int) -> list[SyncSchedule]:
        """All schedules of a district."""
        stmt = (
            select(SyncSchedule)
            .where(SyncSchedule.district_id == district_id)
            .order_by(SyncSchedule.local_hour, SyncSchedule.local_minute)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        district_id: int,
        name: str,
        local_hour: int,
        local_minute: int = 0,
        days_of_week: str = "Daily",
    ) -> SyncSchedule:
        """Add a schedule.

        Raises:
            ValueError: If the local time is out of range
        """
        if not 0 <= local_hour <= 23 or not 0 <= local_minute <= 59:
            raise ValueError(f"Invalid local time {local_hour}:{local_minute:02d}")
        schedule = SyncSchedule(
            district_id=district_id,
            name=name,
            local_hour=local_hour,
            local_minute=local_minute,
            days_of_week=days_of_week,
        )
        self.add(schedule)
        await self.flush()
        return schedule

    async def mark_triggered(self, schedule: SyncSchedule, when: datetime) -> None:
        """Record that a schedule fired."""
        schedule.last_triggered_at = when
        await self.flush()
