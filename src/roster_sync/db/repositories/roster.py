"""Repository for replicated roster records (students, teachers, sections, ...).

One RosterRepository instance serves one roster model. All queries are
scoped to a single school, which is the tenant boundary.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Generic, TypeVar

from sqlalchemy import delete, func, insert, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from roster_sync.db.models import (
    Base,
    RosterRecord,
    Section,
    Student,
    Teacher,
    student_sections,
    teacher_sections,
)
from roster_sync.db.types import UTCDateTime

from .base import BaseRepository

RecordT = TypeVar("RecordT", bound=Base)


class RosterRepository(BaseRepository[RecordT], Generic[RecordT]):
    """Tenant-scoped access to one roster table."""

    def __init__(self, session: AsyncSession, model: type[RecordT]) -> None:
        """Initialize the repository.

        Args:
            session: Async SQLAlchemy session
            model: A RosterRecord model (Student, Teacher, ...)
        """
        if not issubclass(model, RosterRecord):
            raise TypeError(f"{model.__name__} is not a roster model")
        super().__init__(session)
        self.model = model
        self._model: type[RosterRecord] = model

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def get_by_external_id(self, school_id: int, external_id: str) -> RecordT | None:
        """Get a record by its correlation key within a school.

        Always reloads column values so rows touched by bulk UPDATEs are
        never read from a stale identity map.

        Args:
            school_id: Tenant school id
            external_id: Source id

        Returns:
            The record or None
        """
        stmt = select(self.model).where(
            self._model.school_id == school_id,
            self._model.external_id == external_id,
        ).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_school(
        self,
        school_id: int,
        *,
        active: bool | None = None,
    ) -> list[RecordT]:
        """Records of a school, optionally filtered by is_active."""
        stmt = select(self.model).where(self._model.school_id == school_id)
        if active is not None:
            stmt = stmt.where(self._model.is_active.is_(active))
        stmt = stmt.order_by(self._model.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_school(self, school_id: int, *, active: bool | None = None) -> int:
        """Count records of a school, optionally filtered by is_active."""
        stmt = select(func.count()).select_from(self._model).where(
            self._model.school_id == school_id
        )
        if active is not None:
            stmt = stmt.where(self._model.is_active.is_(active))
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def ids_by_external_id(
        self,
        school_id: int,
        external_ids: Iterable[str],
    ) -> dict[str, int]:
        """Map source ids to local ids for the records that exist."""
        wanted = list(dict.fromkeys(external_ids))
        if not wanted:
            return {}
        stmt = select(self._model.external_id, self._model.id).where(
            self._model.school_id == school_id,
            self._model.external_id.in_(wanted),
        )
        result = await self._session.execute(stmt)
        return {ext: local for ext, local in result.all()}

    # -------------------------------------------------------------------------
    # Reconciliation Support
    # -------------------------------------------------------------------------

    async def mark_all_inactive(self, school_id: int, when: datetime) -> int:
        """Provisionally deactivate every record of a school.

        Records that were already inactive keep their original
        deactivated_at.

        Returns:
            Number of rows touched
        """
        stmt = (
            update(self._model)
            .where(self._model.school_id == school_id)
            .values(
                is_active=False,
                deactivated_at=func.coalesce(
                    self._model.deactivated_at, literal(when, UTCDateTime())
                ),
            )
            .execution_options(synchronize_session=False)
        )
        cursor_result = await self._session.execute(stmt)
        row_count: int = getattr(cursor_result, "rowcount", 0) or 0
        return row_count

    async def reactivate(self, school_id: int, external_id: str) -> bool:
        """Mark an existing record active again without touching its attributes.

        Returns:
            True if a row was found
        """
        stmt = (
            update(self._model)
            .where(
                self._model.school_id == school_id,
                self._model.external_id == external_id,
            )
            .values(is_active=True, deactivated_at=None)
            .execution_options(synchronize_session=False)
        )
        cursor_result = await self._session.execute(stmt)
        return bool(getattr(cursor_result, "rowcount", 0))

    async def delete_inactive(self, school_id: int) -> list[str]:
        """Permanently delete inactive records and their membership rows.

        Returns:
            External ids of the deleted records
        """
        ids_stmt = select(self._model.id, self._model.external_id).where(
            self._model.school_id == school_id,
            self._model.is_active.is_(False),
        )
        rows = (await self._session.execute(ids_stmt)).all()
        if not rows:
            return []

        local_ids = [local for local, _ in rows]
        for table, column in _membership_columns(self._model):
            await self._session.execute(delete(table).where(column.in_(local_ids)))

        await self._session.execute(
            delete(self._model)
            .where(self._model.id.in_(local_ids))
            .execution_options(synchronize_session=False)
        )
        return [ext for _, ext in rows]


def _membership_columns(model: type[RosterRecord]):
    """Join-table columns that reference rows of `model`."""
    if model is Section:
        return [
            (student_sections, student_sections.c.section_id),
            (teacher_sections, teacher_sections.c.section_id),
        ]
    if model is Student:
        return [(student_sections, student_sections.c.student_id)]
    if model is Teacher:
        return [(teacher_sections, teacher_sections.c.teacher_id)]
    return []


async def replace_section_members(
    session: AsyncSession,
    section: Section,
    student_ids: Iterable[int],
    teacher_ids: Iterable[int],
) -> None:
    """Rewrite a section's membership rows.

    Args:
        session: Session holding the section
        section: Flushed section (must have an id)
        student_ids: Local student ids enrolled in the section
        teacher_ids: Local teacher ids teaching the section
    """
    await session.execute(delete(student_sections).where(student_sections.c.section_id == section.id))
    await session.execute(delete(teacher_sections).where(teacher_sections.c.section_id == section.id))

    students = sorted(set(student_ids))
    teachers = sorted(set(teacher_ids))
    if students:
        await session.execute(
            insert(student_sections),
            [{"section_id": section.id, "student_id": sid} for sid in students],
        )
    if teachers:
        await session.execute(
            insert(teacher_sections),
            [{"section_id": section.id, "teacher_id": tid} for tid in teachers],
        )


async def section_member_ids(session: AsyncSession, section_id: int) -> tuple[set[int], set[int]]:
    """Current (student ids, teacher ids) of a section."""
    students = await session.execute(
        select(student_sections.c.student_id).where(student_sections.c.section_id == section_id)
    )
    teachers = await session.execute(
        select(teacher_sections.c.teacher_id).where(teacher_sections.c.section_id == section_id)
    )
    return set(students.scalars().all()), set(teachers.scalars().all())
