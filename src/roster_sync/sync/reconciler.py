"""Reconciler - three-phase full-refresh reconciliation of one school.

1. Mark every roster row of the school inactive.
2. Upsert every record of the authoritative full fetch, which
   reactivates it. A record that fails validation reactivates the
   stored row unchanged.
3. Hard-delete whatever is still inactive, with its membership rows.

All three phases, and clearing the school's full-sync flag, run in one
transaction. Any failure rolls everything back and leaves the flag set,
so the next run starts reconciliation again from scratch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from roster_sync.clever.events import ObjectType
from roster_sync.db.models import School
from roster_sync.db.repositories import SchoolRepository
from roster_sync.db.types import utc_now
from roster_sync.logging import bind_school

from .enums import ApplyAction
from .exceptions import ReconciliationIncompleteError, RecordValidationError
from .results import ReconciliationResult
from .upserter import APPLY_ORDER, Upserter

Record = dict[str, Any]


@dataclass
class FullRecordSet:
    """Everything the source currently holds for one school."""

    records: dict[ObjectType, list[Record]] = field(default_factory=dict)

    def add(self, object_type: ObjectType, record: Record) -> None:
        self.records.setdefault(object_type, []).append(record)

    def extend(self, object_type: ObjectType, records: list[Record]) -> None:
        self.records.setdefault(object_type, []).extend(records)

    def __len__(self) -> int:
        return sum(len(items) for items in self.records.values())

    def in_apply_order(self) -> list[tuple[ObjectType, Record]]:
        """Records ordered so sections follow the people they reference."""
        ordered: list[tuple[ObjectType, Record]] = []
        for object_type in APPLY_ORDER:
            ordered.extend((object_type, record) for record in self.records.get(object_type, []))
        return ordered


class Reconciler:
    """Reconcile a school's rows against a full fetch.

    Usage:
        reconciler = Reconciler(session, upserter)
        result = await reconciler.reconcile(school, record_set, baseline_cursor="evt_9")
    """

    def __init__(
        self,
        session: AsyncSession,
        upserter: Upserter,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the reconciler.

        Args:
            session: Session of the school; must have no uncommitted work
            upserter: Upserter bound to the same session and school
            clock: Source of the provisional deactivation timestamp
        """
        self._session = session
        self._upserter = upserter
        self._clock = clock

    async def reconcile(
        self,
        school: School,
        record_set: FullRecordSet,
        *,
        baseline_cursor: str | None = None,
    ) -> ReconciliationResult:
        """Run all three phases and commit.

        Args:
            school: School being reconciled
            record_set: Authoritative full fetch for the school
            baseline_cursor: Change-feed position captured before the
                fetch; stored as the school's cursor on success

        Returns:
            ReconciliationResult with phase counts

        Raises:
            ReconciliationIncompleteError: If any phase failed; the
                transaction was rolled back
        """
        school_id = school.id
        log = bind_school(school_id, school.external_id)
        result = ReconciliationResult()
        phase = "mark-inactive"
        now = self._clock()

        try:
            for object_type in APPLY_ORDER:
                repo = self._upserter.repository(object_type)
                result.marked_inactive += await repo.mark_all_inactive(school_id, now)

            phase = "reactivate"
            for object_type, record in record_set.in_apply_order():
                try:
                    applied = await self._upserter.apply_record(object_type, record)
                except RecordValidationError as e:
                    result.invalid += 1
                    log.warning("Rejected {} during reconciliation: {}", object_type.value, e)
                    # Still present at the source, so the stored row survives as is
                    external_id = record.get("id") if isinstance(record, dict) else None
                    if isinstance(external_id, str) and external_id:
                        repo = self._upserter.repository(object_type)
                        if await repo.reactivate(school_id, external_id):
                            result.kept_invalid += 1
                    continue
                if applied.action is ApplyAction.CREATED:
                    result.created += 1
                    result.reactivated += 1
                elif applied.action is ApplyAction.UPDATED:
                    result.reactivated += 1

            phase = "delete"
            for object_type in reversed(APPLY_ORDER):
                repo = self._upserter.repository(object_type)
                removed = await repo.delete_inactive(school_id)
                if removed:
                    result.deleted_ids[object_type.value] = removed
                    result.deleted += len(removed)

            phase = "commit"
            await SchoolRepository(self._session).complete_full_sync(school, baseline_cursor, self._clock())
            await self._session.commit()
        except asyncio.CancelledError:
            await self._session.rollback()
            log.warning("Reconciliation cancelled during {}; rolled back", phase)
            raise
        except Exception as e:
            await self._session.rollback()
            log.error("Reconciliation failed during {}: {}", phase, e)
            raise ReconciliationIncompleteError(school_id, phase, e) from e

        log.info(
            "Reconciled: reactivated={}, created={}, deleted={}, invalid={}",
            result.reactivated,
            result.created,
            result.deleted,
            result.invalid,
        )
        return result
