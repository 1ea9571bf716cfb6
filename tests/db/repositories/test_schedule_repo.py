"""Tests for SyncScheduleRepository."""

import pytest

from roster_sync.db.repositories import SyncScheduleRepository
from tests.conftest import SEP_01
from tests.factories import make_district, make_schedule


class TestSyncScheduleRepository:
    async def test_create(self, db_session):
        district = make_district(db_session)
        await db_session.flush()

        schedule = await SyncScheduleRepository(db_session).create(
            district.id, "morning", 6, 30, "Mon,Wed"
        )

        assert schedule.id is not None
        assert schedule.is_enabled is True
        assert schedule.last_triggered_at is None

    @pytest.mark.parametrize(("hour", "minute"), [(24, 0), (-1, 0), (2, 60)])
    async def test_create_rejects_invalid_time(self, db_session, hour, minute):
        district = make_district(db_session)
        await db_session.flush()

        with pytest.raises(ValueError):
            await SyncScheduleRepository(db_session).create(district.id, "bad", hour, minute)

    async def test_list_enabled_loads_district(self, db_session):
        first = make_district(db_session, external_id="d-1", time_zone="America/Chicago")
        second = make_district(db_session, external_id="d-2")
        make_schedule(db_session, first, name="late", local_hour=22)
        make_schedule(db_session, first, name="early", local_hour=1)
        make_schedule(db_session, second, name="off", is_enabled=False)
        await db_session.flush()

        schedules = await SyncScheduleRepository(db_session).list_enabled()

        assert [s.name for s in schedules] == ["early", "late"]
        assert schedules[0].district.time_zone == "America/Chicago"

    async def test_list_for_district(self, db_session):
        first = make_district(db_session, external_id="d-1")
        second = make_district(db_session, external_id="d-2")
        make_schedule(db_session, first, name="a")
        make_schedule(db_session, second, name="b")
        await db_session.flush()

        schedules = await SyncScheduleRepository(db_session).list_for_district(second.id)
        assert [s.name for s in schedules] == ["b"]

    async def test_mark_triggered(self, db_session):
        district = make_district(db_session)
        schedule = make_schedule(db_session, district)
        await db_session.flush()

        await SyncScheduleRepository(db_session).mark_triggered(schedule, SEP_01)

        assert schedule.last_triggered_at == SEP_01
