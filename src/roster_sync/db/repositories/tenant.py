"""Repositories for District and School (the sync scopes)."""

from datetime import datetime

from sqlalchemy import select

from roster_sync.db.models import District, School
from roster_sync.db.types import utc_now

from .base import BaseRepository


class DistrictRepository(BaseRepository[District]):
    """Repository for District entities (parent scopes)."""

    model = District

    async def get_by_external_id(self, external_id: str) -> District | None:
        """Get a district by its source id."""
        return await self._get_by_field("external_id", external_id)

    async def list_all(self) -> list[District]:
        """All districts ordered by id."""
        result = await self._session.execute(select(District).order_by(District.id))
        return list(result.scalars().all())

    async def get_or_create(
        self,
        external_id: str,
        name: str,
        time_zone: str = "UTC",
    ) -> tuple[District, bool]:
        """Get an existing district or create a new one.

        Returns:
            Tuple of (district, created) where created is True if new
        """
        existing = await self.get_by_external_id(external_id)
        if existing is not None:
            return existing, False

        district = District(external_id=external_id, name=name, time_zone=time_zone)
        self.add(district)
        await self.flush()
        return district, True


class SchoolRepository(BaseRepository[School]):
    """Repository for School entities (child scopes / tenants).

    Besides lookups, owns the per-school sync state: the full-sync flag
    and the change-feed cursor.
    """

    model = School

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def get_by_external_id(self, external_id: str) -> School | None:
        """Get a school by its source id."""
        return await self._get_by_field("external_id", external_id)

    async def list_for_district(
        self,
        district_id: int,
        *,
        active_only: bool = True,
    ) -> list[School]:
        """Schools of a district, ordered by id.

        Args:
            district_id: District primary key
            active_only: Exclude schools with is_active=False

        Returns:
            List of schools
        """
        stmt = select(School).where(School.district_id == district_id).order_by(School.id)
        if active_only:
            stmt = stmt.where(School.is_active.is_(True))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Create/Update Methods
    # -------------------------------------------------------------------------

    async def get_or_create(
        self,
        district: District,
        external_id: str,
        name: str,
    ) -> tuple[School, bool]:
        """Get an existing school or register a new one.

        New schools start with requires_full_sync=True.

        Returns:
            Tuple of (school, created) where created is True if new
        """
        existing = await self.get_by_external_id(external_id)
        if existing is not None:
            if name and existing.name != name:
                existing.name = name
            return existing, False

        school = School(
            district_id=district.id,
            external_id=external_id,
            name=name or external_id,
            requires_full_sync=True,
        )
        self.add(school)
        await self.flush()
        return school, True

    async def flag_full_sync(self, school: School) -> None:
        """Request a full sync + reconciliation on the next run."""
        school.requires_full_sync = True
        await self.flush()

    async def advance_cursor(self, school: School, cursor: str) -> None:
        """Persist the id of the last successfully applied event.

        Call only after the events up to `cursor` are flushed in the same
        transaction, so the cursor never runs ahead of the data.
        """
        school.event_cursor = cursor
        school.last_incremental_sync_at = utc_now()
        await self.flush()

    async def complete_full_sync(
        self,
        school: School,
        baseline_cursor: str | None,
        finished_at: datetime | None = None,
    ) -> None:
        """Record a successful full sync and clear the full-sync flag.

        Args:
            school: The reconciled school
            baseline_cursor: Feed position captured before the full fetch;
                events after it are replayed by the next incremental run
            finished_at: Completion time (defaults to now)
        """
        school.requires_full_sync = False
        if baseline_cursor is not None:
            school.event_cursor = baseline_cursor
        school.last_full_sync_at = finished_at or utc_now()
        await self.flush()
