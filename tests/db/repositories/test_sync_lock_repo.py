"""Tests for SyncLockRepository.

Each operation commits, so these tests use the file-backed
`session_factory` instead of the rollback-only `db_session`.
"""

from datetime import timedelta

from roster_sync.db.repositories import SyncLockRepository
from tests.conftest import SEP_01

TTL = timedelta(minutes=30)


async def _claim(session_factory, scope, holder, now=SEP_01, ttl=TTL):
    async with session_factory() as session:
        return await SyncLockRepository(session).claim(
            scope, holder, now=now, expires_at=now + ttl, initiated_by="tests"
        )


class TestClaim:
    async def test_claim_free_scope(self, session_factory):
        entry = await _claim(session_factory, "school:1", "holder-a")

        assert entry is not None
        assert entry.holder_id == "holder-a"
        assert entry.expires_at == SEP_01 + TTL

    async def test_claim_held_scope_refused(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")

        assert await _claim(session_factory, "school:1", "holder-b") is None

        async with session_factory() as session:
            current = await SyncLockRepository(session).get("school:1")
        assert current is not None
        assert current.holder_id == "holder-a"

    async def test_claim_expired_scope_succeeds(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")

        later = SEP_01 + TTL + timedelta(seconds=1)
        entry = await _claim(session_factory, "school:1", "holder-b", now=later)

        assert entry is not None
        assert entry.holder_id == "holder-b"

    async def test_scopes_are_independent(self, session_factory):
        assert await _claim(session_factory, "school:1", "holder-a") is not None
        assert await _claim(session_factory, "school:2", "holder-b") is not None


class TestExtendAndRelease:
    async def test_extend_by_holder(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")
        now = SEP_01 + timedelta(minutes=10)

        async with session_factory() as session:
            repo = SyncLockRepository(session)
            assert await repo.extend("school:1", "holder-a", now=now, expires_at=now + TTL)
            entry = await repo.get("school:1")

        assert entry is not None
        assert entry.expires_at == now + TTL
        assert entry.last_heartbeat == now

    async def test_extend_by_other_holder_refused(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")

        async with session_factory() as session:
            assert not await SyncLockRepository(session).extend(
                "school:1", "holder-b", now=SEP_01, expires_at=SEP_01 + TTL
            )

    async def test_extend_expired_refused(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")
        later = SEP_01 + TTL

        async with session_factory() as session:
            assert not await SyncLockRepository(session).extend(
                "school:1", "holder-a", now=later, expires_at=later + TTL
            )

    async def test_release_requires_matching_holder(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")

        async with session_factory() as session:
            repo = SyncLockRepository(session)
            assert not await repo.release("school:1", "holder-b")
            assert await repo.release("school:1", "holder-a")
            assert await repo.get("school:1") is None

    async def test_force_release(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")

        async with session_factory() as session:
            assert await SyncLockRepository(session).release("school:1")


class TestQueries:
    async def test_get_live_and_list_live(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")
        await _claim(session_factory, "school:2", "holder-b", ttl=timedelta(minutes=1))
        later = SEP_01 + timedelta(minutes=5)

        async with session_factory() as session:
            repo = SyncLockRepository(session)
            assert await repo.get_live("school:2", later) is None
            assert await repo.get("school:2") is not None
            live = await repo.list_live(later)

        assert [e.scope for e in live] == ["school:1"]

    async def test_delete_expired(self, session_factory):
        await _claim(session_factory, "school:1", "holder-a")
        await _claim(session_factory, "school:2", "holder-b", ttl=timedelta(minutes=1))

        async with session_factory() as session:
            removed = await SyncLockRepository(session).delete_expired(SEP_01 + timedelta(minutes=5))

        assert removed == ["school:2"]
        async with session_factory() as session:
            assert await SyncLockRepository(session).get("school:1") is not None
