"""Tests for DistrictRepository and SchoolRepository."""

from datetime import UTC, datetime

from roster_sync.db.repositories import DistrictRepository, SchoolRepository
from tests.factories import make_district, make_school


class TestDistrictRepository:
    async def test_get_or_create_new(self, db_session):
        repo = DistrictRepository(db_session)
        district, created = await repo.get_or_create("d-1", "Unified", "America/Chicago")

        assert created is True
        assert district.id is not None
        assert district.time_zone == "America/Chicago"

    async def test_get_or_create_existing(self, db_session):
        existing = make_district(db_session, external_id="d-1")
        await db_session.flush()

        district, created = await DistrictRepository(db_session).get_or_create("d-1", "Other")

        assert created is False
        assert district.id == existing.id

    async def test_list_all_ordered(self, db_session):
        make_district(db_session, external_id="d-2")
        make_district(db_session, external_id="d-1")
        await db_session.flush()

        districts = await DistrictRepository(db_session).list_all()
        assert [d.external_id for d in districts] == ["d-2", "d-1"]

    async def test_lookups_by_id_and_external_id(self, db_session):
        district = make_district(db_session, external_id="d-7")
        await db_session.flush()
        repo = DistrictRepository(db_session)

        assert await repo.get_by_id(district.id) is district
        assert await repo.get_by_external_id("d-7") is district
        assert await repo.get_by_id(district.id + 1) is None
        assert await repo.get_by_external_id("missing") is None


class TestSchoolRepository:
    async def test_get_or_create_registers_with_full_sync_flag(self, db_session):
        district = make_district(db_session)
        await db_session.flush()

        school, created = await SchoolRepository(db_session).get_or_create(district, "s-5", "Lincoln High")

        assert created is True
        assert school.requires_full_sync is True
        assert school.district_id == district.id

    async def test_get_or_create_refreshes_name(self, db_session):
        district = make_district(db_session)
        make_school(db_session, district, external_id="s-5", name="Old Name")
        await db_session.flush()

        school, created = await SchoolRepository(db_session).get_or_create(district, "s-5", "New Name")

        assert created is False
        assert school.name == "New Name"

    async def test_list_for_district_active_only(self, db_session):
        district = make_district(db_session)
        other = make_district(db_session, external_id="d-2")
        make_school(db_session, district, external_id="s-1")
        make_school(db_session, district, external_id="s-2", is_active=False)
        make_school(db_session, other, external_id="s-3")
        await db_session.flush()

        repo = SchoolRepository(db_session)
        active = await repo.list_for_district(district.id)
        everything = await repo.list_for_district(district.id, active_only=False)

        assert [s.external_id for s in active] == ["s-1"]
        assert [s.external_id for s in everything] == ["s-1", "s-2"]

    async def test_advance_cursor(self, db_session):
        district = make_district(db_session)
        school = make_school(db_session, district, event_cursor="100")
        await db_session.flush()

        await SchoolRepository(db_session).advance_cursor(school, "103")

        assert school.event_cursor == "103"
        assert school.last_incremental_sync_at is not None

    async def test_complete_full_sync_clears_flag(self, db_session):
        district = make_district(db_session)
        school = make_school(db_session, district, requires_full_sync=True)
        await db_session.flush()
        finished = datetime(2025, 9, 1, 12, 0, tzinfo=UTC)

        await SchoolRepository(db_session).complete_full_sync(school, "evt-9", finished)

        assert school.requires_full_sync is False
        assert school.event_cursor == "evt-9"
        assert school.last_full_sync_at == finished

    async def test_complete_full_sync_keeps_cursor_without_baseline(self, db_session):
        district = make_district(db_session)
        school = make_school(db_session, district, requires_full_sync=True, event_cursor="50")
        await db_session.flush()

        await SchoolRepository(db_session).complete_full_sync(school, None)

        assert school.event_cursor == "50"

    async def test_flag_full_sync(self, db_session):
        district = make_district(db_session)
        school = make_school(db_session, district)
        await db_session.flush()

        await SchoolRepository(db_session).flag_full_sync(school)

        assert school.requires_full_sync is True
