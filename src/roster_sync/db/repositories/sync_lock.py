"""Repository for sync lock entries.

Claims are atomic: `sync_locks.scope` is the primary key, so inserting an
entry for a scope that already has one raises IntegrityError. Expired
entries are deleted before the insert so a crashed holder never blocks a
scope for longer than its TTL.
"""

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from roster_sync.db.models import SyncLockEntry


class SyncLockRepository:
    """Data access for the `sync_locks` table.

    Unlike the roster repositories this one commits: every lock operation
    is its own transaction, independent of any sync work in progress.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def claim(
        self,
        scope: str,
        holder_id: str,
        *,
        now: datetime,
        expires_at: datetime,
        initiated_by: str | None = None,
        hostname: str | None = None,
    ) -> SyncLockEntry | None:
        """Try to claim a scope.

        Returns:
            The new entry, or None if another live holder owns the scope
        """
        await self._session.execute(
            delete(SyncLockEntry).where(
                SyncLockEntry.scope == scope,
                SyncLockEntry.expires_at <= now,
            )
        )
        entry = SyncLockEntry(
            scope=scope,
            holder_id=holder_id,
            initiated_by=initiated_by,
            hostname=hostname,
            acquired_at=now,
            expires_at=expires_at,
            last_heartbeat=now,
        )
        self._session.add(entry)
        try:
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            return None
        return entry

    async def get(self, scope: str) -> SyncLockEntry | None:
        """Current entry of a scope, expired or not."""
        result = await self._session.execute(
            select(SyncLockEntry)
            .where(SyncLockEntry.scope == scope)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_live(self, scope: str, now: datetime) -> SyncLockEntry | None:
        """Current unexpired entry of a scope."""
        result = await self._session.execute(
            select(SyncLockEntry)
            .where(SyncLockEntry.scope == scope, SyncLockEntry.expires_at > now)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_live(self, now: datetime) -> list[SyncLockEntry]:
        """All unexpired entries, oldest first."""
        result = await self._session.execute(
            select(SyncLockEntry)
            .where(SyncLockEntry.expires_at > now)
            .order_by(SyncLockEntry.acquired_at)
        )
        return list(result.scalars().all())

    async def release(self, scope: str, holder_id: str | None = None) -> bool:
        """Delete a scope's entry.

        Args:
            scope: Scope to release
            holder_id: Only release if held by this holder (None = force)

        Returns:
            True if an entry was removed
        """
        stmt = delete(SyncLockEntry).where(SyncLockEntry.scope == scope)
        if holder_id is not None:
            stmt = stmt.where(SyncLockEntry.holder_id == holder_id)
        result = await self._session.execute(stmt)
        await self._session.commit()
        return bool(getattr(result, "rowcount", 0))

    async def extend(
        self,
        scope: str,
        holder_id: str,
        *,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """Push out the expiry of a live entry owned by `holder_id`.

        Returns:
            False if the holder no longer owns a live entry for the scope
        """
        result = await self._session.execute(
            update(SyncLockEntry)
            .where(
                SyncLockEntry.scope == scope,
                SyncLockEntry.holder_id == holder_id,
                SyncLockEntry.expires_at > now,
            )
            .values(expires_at=expires_at, last_heartbeat=now)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return bool(getattr(result, "rowcount", 0))

    async def delete_expired(self, now: datetime) -> list[str]:
        """Remove every expired entry.

        Returns:
            Scopes whose entries were removed
        """
        result = await self._session.execute(
            select(SyncLockEntry.scope).where(SyncLockEntry.expires_at <= now)
        )
        scopes = list(result.scalars().all())
        if scopes:
            await self._session.execute(
                delete(SyncLockEntry).where(
                    SyncLockEntry.scope.in_(scopes),
                    SyncLockEntry.expires_at <= now,
                )
            )
        await self._session.commit()
        return scopes
