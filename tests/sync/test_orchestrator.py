"""Tests for SyncOrchestrator: mode selection, cursors, fan-out and locking."""

from roster_sync.config import Settings, SyncConfig
from roster_sync.db.models import RunStatus, School, Student, SyncMode, SyncRun, TriggerSource
from roster_sync.db.repositories import RosterRepository, SyncRunRepository
from roster_sync.sync import RunContext, SyncLock, SyncOrchestrator, SyncOutcome, Upserter
from tests.factories import make_district, make_school, make_student, make_sync_run
from tests.fixtures.clever_responses import event, school_record, section_record, student_record
from tests.fixtures.scripted_client import ScriptedClever


def _settings(**sync) -> Settings:
    return Settings(_env_file=None, sync=SyncConfig(**sync))


async def _seed_incremental_school(session_factory, cursor="100") -> int:
    """A school that has synced before and follows the change feed."""
    async with session_factory() as session:
        district = make_district(session)
        school = make_school(session, district, event_cursor=cursor)
        await session.flush()
        make_sync_run(session, scope=school.scope, school_id=school.id, mode=SyncMode.FULL)
        await session.commit()
        return school.id


async def _school(session_factory, school_id) -> School:
    async with session_factory() as session:
        return await session.get(School, school_id)


async def _runs(session_factory, scope=None) -> list[SyncRun]:
    async with session_factory() as session:
        return await SyncRunRepository(session).recent(scope=scope)


def _feed() -> list[dict]:
    return [
        event("101", "users.created", student_record("stu-1")),
        event("102", "users.updated", student_record("stu-1", last="Byron")),
        event("103", "users.deleted", student_record("stu-1")),
    ]


class TestIncrementalSync:
    async def test_events_applied_and_cursor_advanced(self, session_factory):
        school_id = await _seed_incremental_school(session_factory)
        client = ScriptedClever(events=_feed())
        orchestrator = SyncOrchestrator(session_factory, client, settings=_settings())

        summary = await orchestrator.sync_school(school_id)

        assert summary.outcome is SyncOutcome.SUCCESS
        result = summary.school_results[0]
        assert result.mode is SyncMode.INCREMENTAL
        assert (result.processed, result.created, result.updated, result.deleted) == (3, 1, 1, 1)
        assert result.cursor == "103"
        assert client.event_requests == ["100"]

        school = await _school(session_factory, school_id)
        assert school.event_cursor == "103"
        assert school.last_incremental_sync_at is not None

        async with session_factory() as session:
            row = await RosterRepository(session, Student).get_by_external_id(school_id, "stu-1")
        assert row.last_name == "Byron"
        assert row.is_active is False

    async def test_second_run_resumes_from_cursor(self, session_factory):
        school_id = await _seed_incremental_school(session_factory)
        client = ScriptedClever(events=_feed())
        orchestrator = SyncOrchestrator(session_factory, client, settings=_settings())

        await orchestrator.sync_school(school_id)
        summary = await orchestrator.sync_school(school_id)

        assert client.event_requests == ["100", "103"]
        assert summary.school_results[0].processed == 0
        assert summary.school_results[0].cursor == "103"

    async def test_failure_keeps_cursor_at_last_commit(self, session_factory, monkeypatch):
        school_id = await _seed_incremental_school(session_factory)
        original = Upserter.apply_event

        async def failing_apply(self, event):
            if event.id == "102":
                raise RuntimeError("database unavailable")
            return await original(self, event)

        monkeypatch.setattr(Upserter, "apply_event", failing_apply)
        orchestrator = SyncOrchestrator(session_factory, ScriptedClever(events=_feed()), settings=_settings())

        summary = await orchestrator.sync_school(school_id)

        assert summary.outcome is SyncOutcome.FAILURE
        result = summary.school_results[0]
        assert result.status is RunStatus.FAILED
        assert "database unavailable" in result.error
        assert (result.processed, result.created, result.updated) == (0, 0, 0)
        assert result.cursor == "100"
        (run,) = [r for r in await _runs(session_factory) if r.status is RunStatus.FAILED]
        assert (run.records_processed, run.records_created) == (0, 0)
        assert run.last_cursor == "100"

        school = await _school(session_factory, school_id)
        assert school.event_cursor == "100"
        assert school.requires_full_sync is False
        async with session_factory() as session:
            assert await RosterRepository(session, Student).count_for_school(school_id) == 0

    async def test_cursor_committed_per_batch(self, session_factory, monkeypatch):
        school_id = await _seed_incremental_school(session_factory)
        original = Upserter.apply_event

        async def failing_apply(self, event):
            if event.id == "103":
                raise RuntimeError("boom")
            return await original(self, event)

        monkeypatch.setattr(Upserter, "apply_event", failing_apply)
        orchestrator = SyncOrchestrator(
            session_factory,
            ScriptedClever(events=_feed()),
            settings=_settings(commit_batch_size=2),
        )

        summary = await orchestrator.sync_school(school_id)

        school = await _school(session_factory, school_id)
        assert school.event_cursor == "102"
        result = summary.school_results[0]
        assert (result.processed, result.created, result.updated, result.deleted) == (2, 1, 1, 0)
        assert result.cursor == "102"

    async def test_invalid_and_unsupported_events_do_not_stop_the_run(self, session_factory):
        school_id = await _seed_incremental_school(session_factory)
        client = ScriptedClever(
            events=[
                event("101", "users.created", student_record("stu-1", first=None, last=None)),
                event("102", "districts.updated", {"id": "d-1"}),
                {"id": "103"},
                event("104", "users.created", student_record("stu-2")),
            ]
        )
        orchestrator = SyncOrchestrator(session_factory, client, settings=_settings())

        summary = await orchestrator.sync_school(school_id)

        result = summary.school_results[0]
        assert result.status is RunStatus.SUCCEEDED
        assert result.created == 1
        assert result.skipped == 1
        assert result.failed == 2
        assert result.cursor == "104"


class TestModeSelection:
    async def test_new_school_runs_full(self, session_factory):
        async with session_factory() as session:
            district = make_district(session)
            school = make_school(session, district, requires_full_sync=True)
            await session.flush()
            make_student(session, school, external_id="gone")
            await session.commit()
            school_id = school.id

        client = ScriptedClever(
            students={"s-1": [student_record("stu-1")]},
            sections={"s-1": [section_record("sec-1", students=["stu-1"])]},
            events=_feed(),
        )
        orchestrator = SyncOrchestrator(session_factory, client, settings=_settings())

        summary = await orchestrator.sync_school(school_id)

        result = summary.school_results[0]
        assert result.mode is SyncMode.FULL
        assert result.status is RunStatus.SUCCEEDED
        assert result.created == 2
        assert result.deleted == 1
        assert result.reconciliation.deleted_ids == {"student": ["gone"]}

        school = await _school(session_factory, school_id)
        assert school.requires_full_sync is False
        assert school.event_cursor == "103"

        runs = await _runs(session_factory, school.scope)
        assert runs[0].mode is SyncMode.FULL
        assert runs[0].status is RunStatus.SUCCEEDED

    async def test_no_successful_run_means_full(self, session_factory):
        async with session_factory() as session:
            district = make_district(session)
            school = make_school(session, district, event_cursor="100")
            await session.flush()
            make_sync_run(session, school_id=school.id, status=RunStatus.FAILED)
            await session.commit()
            school_id = school.id

        orchestrator = SyncOrchestrator(session_factory, ScriptedClever(), settings=_settings())
        summary = await orchestrator.sync_school(school_id)

        assert summary.school_results[0].mode is SyncMode.FULL

    async def test_force_full(self, session_factory):
        school_id = await _seed_incremental_school(session_factory)
        orchestrator = SyncOrchestrator(session_factory, ScriptedClever(), settings=_settings())

        summary = await orchestrator.sync_school(school_id, force_full=True)

        assert summary.school_results[0].mode is SyncMode.FULL

    async def test_reconcile_school(self, session_factory):
        school_id = await _seed_incremental_school(session_factory)
        orchestrator = SyncOrchestrator(session_factory, ScriptedClever(), settings=_settings())

        summary = await orchestrator.reconcile_school(school_id)

        assert summary.school_results[0].mode is SyncMode.RECONCILIATION
        assert summary.school_results[0].status is RunStatus.SUCCEEDED

    async def test_failed_full_sync_keeps_flag(self, session_factory):
        school_id = await _seed_incremental_school(session_factory)
        client = ScriptedClever()
        client.failing_schools = {"s-1"}
        orchestrator = SyncOrchestrator(session_factory, client, settings=_settings())

        summary = await orchestrator.sync_school(school_id, force_full=True)

        assert summary.school_results[0].status is RunStatus.FAILED
        school = await _school(session_factory, school_id)
        assert school.requires_full_sync is True

    async def test_unknown_school(self, session_factory):
        orchestrator = SyncOrchestrator(session_factory, ScriptedClever(), settings=_settings())

        summary = await orchestrator.sync_school(999)

        assert summary.school_results[0].status is RunStatus.FAILED
        assert summary.outcome is SyncOutcome.FAILURE


class TestDistrictFanOut:
    async def _seed_district(self, session_factory, count=5) -> int:
        async with session_factory() as session:
            district = make_district(session)
            for n in range(1, count + 1):
                make_school(session, district, external_id=f"s-{n}")
            await session.commit()
            return district.id

    def _client(self, count=5) -> ScriptedClever:
        return ScriptedClever(
            schools=[school_record(f"s-{n}") for n in range(1, count + 1)],
            students={f"s-{n}": [student_record(f"stu-{n}", school=f"s-{n}")] for n in range(1, count + 1)},
        )

    async def test_one_failing_school_gives_partial(self, session_factory):
        district_id = await self._seed_district(session_factory)
        client = self._client()
        client.failing_schools = {"s-3"}
        orchestrator = SyncOrchestrator(
            session_factory, client, settings=_settings(max_concurrent_schools=2)
        )

        summary = await orchestrator.sync_district(district_id)

        assert summary.successful_children == 4
        assert summary.failed_children == 1
        assert summary.outcome is SyncOutcome.PARTIAL
        failed = [r for r in summary.school_results if not r.succeeded]
        assert failed[0].external_id == "s-3"

        parent = (await _runs(session_factory, f"district:{district_id}"))[0]
        assert parent.status is RunStatus.PARTIALLY_SUCCEEDED
        assert "s-3" in parent.error_message
        async with session_factory() as session:
            children = await SyncRunRepository(session).children_of(parent.id)
        assert len(children) == 5

    async def test_require_all_children_success(self, session_factory):
        district_id = await self._seed_district(session_factory, count=2)
        client = self._client(count=2)
        client.failing_schools = {"s-1"}
        orchestrator = SyncOrchestrator(
            session_factory, client, settings=_settings(require_all_children_success=True)
        )

        summary = await orchestrator.sync_district(district_id)

        assert summary.outcome is SyncOutcome.FAILURE

    async def test_discovery_registers_new_schools(self, session_factory):
        district_id = await self._seed_district(session_factory, count=1)
        client = self._client(count=2)
        client.schools.append(school_record("s-x", district="d-other"))
        orchestrator = SyncOrchestrator(session_factory, client, settings=_settings())

        summary = await orchestrator.sync_district(district_id)

        assert sorted(r.external_id for r in summary.school_results) == ["s-1", "s-2"]
        assert summary.success

    async def test_auth_failure_aborts_run(self, session_factory):
        district_id = await self._seed_district(session_factory, count=2)
        client = self._client(count=2)
        client.auth_fails = True
        orchestrator = SyncOrchestrator(session_factory, client, settings=_settings())

        summary = await orchestrator.sync_district(district_id)

        assert summary.aborted
        assert summary.outcome is SyncOutcome.FAILURE
        assert any("Authentication failed" in e for e in summary.errors)
        parent = (await _runs(session_factory, f"district:{district_id}"))[0]
        assert parent.status is RunStatus.FAILED

    async def test_auth_failure_during_fan_out(self, session_factory):
        district_id = await self._seed_district(session_factory, count=2)
        client = self._client(count=2)
        client.auth_fails = True
        orchestrator = SyncOrchestrator(
            session_factory, client, settings=_settings(), discover_schools=False
        )

        summary = await orchestrator.sync_district(district_id)

        assert summary.aborted
        assert summary.outcome is SyncOutcome.FAILURE

    async def test_sync_all_stops_after_auth_failure(self, session_factory):
        async with session_factory() as session:
            make_district(session, external_id="d-1")
            make_district(session, external_id="d-2")
            await session.commit()
        client = ScriptedClever()
        client.auth_fails = True
        orchestrator = SyncOrchestrator(session_factory, client, settings=_settings())

        summary = await orchestrator.sync_all()

        assert summary.aborted
        assert len(summary.run_ids) == 1

    async def test_unknown_district(self, session_factory):
        orchestrator = SyncOrchestrator(session_factory, ScriptedClever(), settings=_settings())

        summary = await orchestrator.sync_district(42)

        assert summary.outcome is SyncOutcome.FAILURE


class TestLockContention:
    async def test_locked_school_is_skipped_and_recorded(self, session_factory):
        school_id = await _seed_incremental_school(session_factory)
        other = SyncLock(session_factory)
        await other.try_acquire(f"school:{school_id}", "someone-else", initiated_by="alice")
        orchestrator = SyncOrchestrator(
            session_factory, ScriptedClever(events=_feed()), lock=SyncLock(session_factory), settings=_settings()
        )

        summary = await orchestrator.sync_school(
            school_id, context=RunContext(TriggerSource.MANUAL, "bob")
        )

        result = summary.school_results[0]
        assert result.status is RunStatus.SKIPPED
        assert "alice" in result.error
        school = await _school(session_factory, school_id)
        assert school.event_cursor == "100"

        skipped = await _runs(session_factory, f"school:{school_id}")
        assert skipped[0].status is RunStatus.SKIPPED
        assert skipped[0].initiated_by == "bob"

    async def test_locked_district_is_skipped(self, session_factory):
        async with session_factory() as session:
            district = make_district(session)
            await session.commit()
            district_id = district.id
        await SyncLock(session_factory).try_acquire(f"district:{district_id}", "someone-else")
        orchestrator = SyncOrchestrator(session_factory, ScriptedClever(), settings=_settings())

        summary = await orchestrator.sync_district(district_id)

        assert summary.outcome is SyncOutcome.FAILURE
        runs = await _runs(session_factory, f"district:{district_id}")
        assert [r.status for r in runs] == [RunStatus.SKIPPED]

    async def test_locks_released_after_run(self, session_factory):
        school_id = await _seed_incremental_school(session_factory)
        lock = SyncLock(session_factory)
        orchestrator = SyncOrchestrator(session_factory, ScriptedClever(), lock=lock, settings=_settings())

        await orchestrator.sync_school(school_id)

        assert await lock.list_active() == []

