"""Tests for the SyncLock service."""

import asyncio
import contextlib
from datetime import timedelta

import pytest

from roster_sync.sync import LockContentionError, LockLostError, SyncLock, new_holder_id


@pytest.fixture
def lock(session_factory, clock):
    return SyncLock(session_factory, ttl=timedelta(minutes=30), heartbeat_interval=60, clock=clock)


class TestTryAcquire:
    async def test_grant_and_refuse(self, lock):
        first = await lock.try_acquire("school:1", "holder-a", initiated_by="alice")
        second = await lock.try_acquire("school:1", "holder-b")

        assert first.granted
        assert not second.granted
        assert second.current_holder == "holder-a"
        assert second.initiated_by == "alice"
        assert second.expires_at == first.expires_at

    async def test_concurrent_claims_grant_exactly_one(self, lock):
        results = await asyncio.gather(
            *(lock.try_acquire("school:1", f"holder-{n}") for n in range(5))
        )

        assert sum(r.granted for r in results) == 1

    async def test_expired_lock_can_be_reclaimed(self, lock, clock):
        await lock.try_acquire("school:1", "holder-a")
        clock.advance(minutes=31)

        result = await lock.try_acquire("school:1", "holder-b")

        assert result.granted
        holder = await lock.get_holder("school:1")
        assert holder.holder_id == "holder-b"

    async def test_ttl_override(self, lock, clock):
        result = await lock.try_acquire("school:1", "holder-a", ttl=timedelta(seconds=10))
        assert result.expires_at == clock.now + timedelta(seconds=10)


class TestReleaseAndExtend:
    async def test_release_only_by_holder(self, lock):
        await lock.try_acquire("school:1", "holder-a")

        assert not await lock.release("school:1", "holder-b")
        assert await lock.is_locked("school:1")
        assert await lock.release("school:1", "holder-a")
        assert not await lock.is_locked("school:1")

    async def test_force_release(self, lock):
        await lock.try_acquire("school:1", "holder-a")

        assert await lock.force_release("school:1")
        assert not await lock.force_release("school:1")

    async def test_extend(self, lock, clock):
        await lock.try_acquire("school:1", "holder-a")
        clock.advance(minutes=20)

        assert await lock.extend("school:1", "holder-a")
        clock.advance(minutes=20)
        assert await lock.is_locked("school:1")

    async def test_extend_after_expiry_fails(self, lock, clock):
        await lock.try_acquire("school:1", "holder-a")
        clock.advance(minutes=31)

        assert not await lock.extend("school:1", "holder-a")

    async def test_cleanup_and_list(self, lock, clock):
        await lock.try_acquire("school:1", "holder-a", ttl=timedelta(minutes=1))
        await lock.try_acquire("school:2", "holder-b")
        clock.advance(minutes=5)

        assert [e.scope for e in await lock.list_active()] == ["school:2"]
        assert await lock.cleanup_expired() == 1
        assert await lock.cleanup_expired() == 0


class TestHold:
    async def test_hold_releases_on_exit(self, lock):
        async with lock.hold("school:1", initiated_by="tests") as acquisition:
            assert acquisition.granted
            assert await lock.is_locked("school:1")

        assert not await lock.is_locked("school:1")

    async def test_hold_releases_on_error(self, lock):
        with pytest.raises(RuntimeError):
            async with lock.hold("school:1"):
                raise RuntimeError("boom")

        assert not await lock.is_locked("school:1")

    async def test_hold_contention(self, lock):
        await lock.try_acquire("school:1", "holder-a", initiated_by="scheduler")

        with pytest.raises(LockContentionError) as exc_info:
            async with lock.hold("school:1"):
                pass

        assert exc_info.value.holder == "holder-a"
        assert exc_info.value.initiated_by == "scheduler"

    async def test_lost_lock_stops_the_holder(self, session_factory):
        lock = SyncLock(session_factory, heartbeat_interval=0.01)

        with pytest.raises(LockLostError):
            async with lock.hold("school:1", "holder-a"):
                await lock.force_release("school:1")
                await asyncio.sleep(5)

        assert not await lock.is_locked("school:1")

    async def test_lost_lock_reported_when_block_completes(self, session_factory):
        lock = SyncLock(session_factory, heartbeat_interval=0.01)

        with pytest.raises(LockLostError):
            async with lock.hold("school:1", "holder-a"):
                await lock.force_release("school:1")
                with contextlib.suppress(asyncio.CancelledError):
                    await asyncio.sleep(5)

        assert asyncio.current_task().cancelling() == 0

    def test_holder_ids_unique(self):
        assert new_holder_id() != new_holder_id()
