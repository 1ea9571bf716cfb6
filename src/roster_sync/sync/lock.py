"""SyncLock - database-backed mutual exclusion per sync scope.

A claim is one atomic insert keyed by scope, so of two orchestrators
racing for the same scope exactly one wins. The loser learns who holds
the scope and skips it for this trigger cycle.

Held locks are kept alive by a heartbeat that pushes out their expiry.
If the heartbeat finds the entry gone or owned by someone else (the TTL
lapsed and another holder claimed the scope), the holding task is
cancelled and the run ends with LockLostError instead of writing
alongside the new holder.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import socket
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roster_sync.config import get_settings
from roster_sync.db.models import SyncLockEntry
from roster_sync.db.repositories import SyncLockRepository
from roster_sync.db.types import utc_now
from roster_sync.logging import get_logger

from .exceptions import LockContentionError, LockLostError

logger = get_logger(__name__)


def new_holder_id() -> str:
    """Holder id unique to this process and call: "host:pid:random"."""
    return f"{socket.gethostname()[:40]}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class LockAcquisition:
    """Answer to a claim attempt."""

    granted: bool
    scope: str
    holder_id: str
    """The caller's holder id."""

    current_holder: str | None = None
    """Holder that owns the scope when the claim was refused."""

    initiated_by: str | None = None
    """Initiator recorded by the current owner."""

    expires_at: datetime | None = None


class SyncLock:
    """Claim, extend and release per-scope sync locks.

    Every operation runs in its own short session and commits at once,
    independent of the sync work the lock protects.

    Usage:
        lock = SyncLock(get_session_factory())
        async with lock.hold("school:4", initiated_by="scheduler"):
            ...  # sync the school
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ttl: timedelta | None = None,
        heartbeat_interval: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the lock service.

        Args:
            session_factory: Factory for the lock's own sessions
            ttl: Lock lifetime (defaults to settings.sync.lock_ttl)
            heartbeat_interval: Seconds between expiry extensions while
                held (defaults to settings.sync.heartbeat_interval_seconds)
            clock: Source of "now" for expiry decisions
        """
        settings = get_settings()
        self._session_factory = session_factory
        self._ttl = ttl or settings.sync.lock_ttl
        self._heartbeat_interval = heartbeat_interval or settings.sync.heartbeat_interval_seconds
        self._clock = clock
        self._hostname = socket.gethostname()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    # -------------------------------------------------------------------------
    # Claim / release
    # -------------------------------------------------------------------------

    async def try_acquire(
        self,
        scope: str,
        holder_id: str,
        ttl: timedelta | None = None,
        *,
        initiated_by: str | None = None,
    ) -> LockAcquisition:
        """Claim a scope if no unexpired entry exists for it.

        Args:
            scope: Scope key ("district:3", "school:9")
            holder_id: Caller's unique holder id
            ttl: Lifetime override
            initiated_by: Who asked for the sync (user, "scheduler")

        Returns:
            LockAcquisition; when refused, carries the current holder
        """
        now = self._clock()
        expires_at = now + (ttl or self._ttl)
        async with self._session_factory() as session:
            repo = SyncLockRepository(session)
            entry = await repo.claim(
                scope,
                holder_id,
                now=now,
                expires_at=expires_at,
                initiated_by=initiated_by,
                hostname=self._hostname,
            )
            if entry is not None:
                logger.debug("Lock {} acquired by {} until {}", scope, holder_id, expires_at)
                return LockAcquisition(True, scope, holder_id, expires_at=expires_at)

            current = await repo.get(scope)

        holder = current.holder_id if current else None
        initiator = current.initiated_by if current else None
        logger.info("Lock {} is held by {} (initiated by {})", scope, holder, initiator)
        return LockAcquisition(
            False,
            scope,
            holder_id,
            current_holder=holder,
            initiated_by=initiator,
            expires_at=current.expires_at if current else None,
        )

    async def release(self, scope: str, holder_id: str) -> bool:
        """Release a scope held by `holder_id`.

        Returns:
            False if the caller did not hold the scope
        """
        async with self._session_factory() as session:
            released = await SyncLockRepository(session).release(scope, holder_id)
        if released:
            logger.debug("Lock {} released by {}", scope, holder_id)
        return released

    async def force_release(self, scope: str) -> bool:
        """Remove a scope's entry regardless of holder (administrative)."""
        async with self._session_factory() as session:
            released = await SyncLockRepository(session).release(scope)
        if released:
            logger.warning("Lock {} force-released", scope)
        return released

    async def extend(self, scope: str, holder_id: str, ttl: timedelta | None = None) -> bool:
        """Push out the expiry of a held lock.

        Returns:
            False if `holder_id` no longer holds a live entry for the scope
        """
        now = self._clock()
        async with self._session_factory() as session:
            return await SyncLockRepository(session).extend(
                scope,
                holder_id,
                now=now,
                expires_at=now + (ttl or self._ttl),
            )

    async def cleanup_expired(self) -> int:
        """Delete every expired entry.

        Returns:
            Number of entries removed
        """
        async with self._session_factory() as session:
            scopes = await SyncLockRepository(session).delete_expired(self._clock())
        for scope in scopes:
            logger.info("Cleaned up expired lock {}", scope)
        return len(scopes)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_holder(self, scope: str) -> SyncLockEntry | None:
        """Live entry of a scope, if any."""
        async with self._session_factory() as session:
            return await SyncLockRepository(session).get_live(scope, self._clock())

    async def is_locked(self, scope: str) -> bool:
        return await self.get_holder(scope) is not None

    async def list_active(self) -> list[SyncLockEntry]:
        """All live entries."""
        async with self._session_factory() as session:
            return await SyncLockRepository(session).list_live(self._clock())

    # -------------------------------------------------------------------------
    # Scoped holding
    # -------------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def hold(
        self,
        scope: str,
        holder_id: str | None = None,
        *,
        initiated_by: str | None = None,
    ) -> AsyncIterator[LockAcquisition]:
        """Hold a scope for the duration of a block.

        A heartbeat extends the lock every `heartbeat_interval` seconds.
        The lock is released on exit, including on error or cancellation.

        Raises:
            LockContentionError: If the scope is held by someone else
            LockLostError: If the lock was lost while the block ran
        """
        holder_id = holder_id or new_holder_id()
        acquisition = await self.try_acquire(scope, holder_id, initiated_by=initiated_by)
        if not acquisition.granted:
            raise LockContentionError(scope, acquisition.current_holder, acquisition.initiated_by)

        owner = asyncio.current_task()
        lost = asyncio.Event()
        heartbeat = asyncio.create_task(self._heartbeat(scope, holder_id, owner, lost))
        try:
            yield acquisition
        except asyncio.CancelledError:
            if not lost.is_set():
                raise
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            if lost.is_set():
                # The heartbeat may have cancelled the owner after the block's last await
                with contextlib.suppress(asyncio.CancelledError):
                    await asyncio.sleep(0)
            await self.release(scope, holder_id)

        if lost.is_set():
            if owner is not None and owner.cancelling():
                owner.uncancel()
            raise LockLostError(scope, holder_id)

    async def _heartbeat(
        self,
        scope: str,
        holder_id: str,
        owner: asyncio.Task[object] | None,
        lost: asyncio.Event,
    ) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                still_held = await self.extend(scope, holder_id)
            except SQLAlchemyError as e:
                logger.warning("Heartbeat for {} failed, will retry: {}", scope, e)
                continue
            if not still_held:
                logger.error("Lock {} lost by {}; cancelling the run", scope, holder_id)
                lost.set()
                if owner is not None:
                    owner.cancel()
                return
