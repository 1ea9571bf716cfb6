"""Upserter - apply source records and change events to one school's store.

Every write is keyed by `(school_id, external_id)`, so applying the same
record twice updates the existing row instead of inserting a duplicate.
Deleted-events only soft-delete; rows are hard-deleted by the
reconciler alone.

Object types are dispatched through a small registry mapping each
ObjectType to its model and decoder, resolved once when the event is
parsed.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from roster_sync.clever.events import ChangeEvent, EventAction, ObjectType
from roster_sync.db.models import (
    Course,
    RosterRecord,
    School,
    Section,
    Student,
    Teacher,
    Term,
)
from roster_sync.db.repositories import RosterRepository, replace_section_members
from roster_sync.db.types import utc_now
from roster_sync.logging import get_logger
from roster_sync.schemas.clever_api import (
    CleverCourse,
    CleverSection,
    CleverTerm,
    CleverUser,
)

from .enums import ApplyAction
from .exceptions import RecordValidationError
from .results import ApplyResult

logger = get_logger(__name__)

Record = dict[str, Any]
SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass
class DecodedRecord:
    """A validated source record ready to be written."""

    external_id: str
    attributes: dict[str, Any]
    owners: frozenset[str]
    """Owning-unit ids named by the record (schools or a district)."""

    student_ids: list[str] = field(default_factory=list)
    teacher_ids: list[str] = field(default_factory=list)


# ------------------------------------------------------------------------------
# Decoders
# ------------------------------------------------------------------------------
def _parse(schema: type[SchemaT], record: Record, object_type: ObjectType) -> SchemaT:
    try:
        return schema.model_validate(record)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first.get("loc", ())) or None
        raise RecordValidationError(
            f"Invalid {object_type.value} record: {first.get('msg')}",
            field=field_name,
            external_id=str(record.get("id")) if record.get("id") else None,
        ) from e


def _require(value: str | None, field_name: str, object_type: ObjectType, external_id: str | None) -> str:
    if value is None or not value.strip():
        raise RecordValidationError(
            f"{object_type.value} record {external_id or '<no id>'} is missing {field_name}",
            field=field_name,
            external_id=external_id,
        )
    return value


def _owners(*values: str | None, extra: list[str] | None = None) -> frozenset[str]:
    return frozenset(v for v in (*values, *(extra or [])) if v)


def _decode_student(record: Record) -> DecodedRecord:
    user = _parse(CleverUser, record, ObjectType.STUDENT)
    external_id = _require(user.id, "id", ObjectType.STUDENT, None)
    _require(user.name.display, "name", ObjectType.STUDENT, external_id)
    role = user.roles.student
    if role is None:
        raise RecordValidationError(
            f"student record {external_id} has no student role", field="roles.student", external_id=external_id
        )
    owners = _owners(role.school, extra=role.schools)
    if not owners:
        raise RecordValidationError(
            f"student record {external_id} has no school", field="roles.student.school", external_id=external_id
        )
    return DecodedRecord(
        external_id=external_id,
        owners=owners,
        attributes={
            "first_name": user.name.first,
            "middle_name": user.name.middle,
            "last_name": user.name.last,
            "email": user.email,
            "sis_id": role.sis_id,
            "student_number": role.student_number,
            "state_id": role.state_id,
            "grade": role.grade,
            "graduation_year": role.graduation_year,
            "source_last_modified": user.last_modified,
        },
    )


def _decode_teacher(record: Record) -> DecodedRecord:
    user = _parse(CleverUser, record, ObjectType.TEACHER)
    external_id = _require(user.id, "id", ObjectType.TEACHER, None)
    _require(user.name.display, "name", ObjectType.TEACHER, external_id)
    role = user.roles.teacher
    if role is None:
        raise RecordValidationError(
            f"teacher record {external_id} has no teacher role", field="roles.teacher", external_id=external_id
        )
    owners = _owners(role.school, extra=role.schools)
    if not owners:
        raise RecordValidationError(
            f"teacher record {external_id} has no school", field="roles.teacher.school", external_id=external_id
        )
    return DecodedRecord(
        external_id=external_id,
        owners=owners,
        attributes={
            "first_name": user.name.first,
            "last_name": user.name.last,
            "email": user.email,
            "sis_id": role.sis_id,
            "teacher_number": role.teacher_number,
            "title": role.title,
            "source_last_modified": user.last_modified,
        },
    )


def _decode_section(record: Record) -> DecodedRecord:
    section = _parse(CleverSection, record, ObjectType.SECTION)
    external_id = _require(section.id, "id", ObjectType.SECTION, None)
    name = _require(section.name, "name", ObjectType.SECTION, external_id)
    school = _require(section.school, "school", ObjectType.SECTION, external_id)
    teachers = list(dict.fromkeys([t for t in (section.teacher, *section.teachers) if t]))
    return DecodedRecord(
        external_id=external_id,
        owners=frozenset({school}),
        attributes={
            "name": name,
            "sis_id": section.sis_id,
            "section_number": section.section_number,
            "period": section.period,
            "subject": section.subject,
            "grade": section.grade,
            "course_external_id": section.course,
            "term_external_id": section.term_id,
            "primary_teacher_external_id": section.teacher,
            "source_last_modified": section.last_modified,
        },
        student_ids=list(section.students),
        teacher_ids=teachers,
    )


def _decode_course(record: Record) -> DecodedRecord:
    course = _parse(CleverCourse, record, ObjectType.COURSE)
    external_id = _require(course.id, "id", ObjectType.COURSE, None)
    name = _require(course.name, "name", ObjectType.COURSE, external_id)
    district = _require(course.district, "district", ObjectType.COURSE, external_id)
    return DecodedRecord(
        external_id=external_id,
        owners=frozenset({district}),
        attributes={
            "name": name,
            "number": course.number,
            "source_last_modified": course.last_modified,
        },
    )


def _decode_term(record: Record) -> DecodedRecord:
    term = _parse(CleverTerm, record, ObjectType.TERM)
    external_id = _require(term.id, "id", ObjectType.TERM, None)
    name = _require(term.name, "name", ObjectType.TERM, external_id)
    district = _require(term.district, "district", ObjectType.TERM, external_id)
    return DecodedRecord(
        external_id=external_id,
        owners=frozenset({district}),
        attributes={
            "name": name,
            "start_date": term.start_date,
            "end_date": term.end_date,
            "source_last_modified": term.last_modified,
        },
    )


@dataclass(frozen=True)
class Binding:
    """How one object type is decoded and stored."""

    model: type[RosterRecord]
    decode: Callable[[Record], DecodedRecord]
    district_owned: bool = False
    """Owner ids are district ids (courses, terms) instead of school ids."""


BINDINGS: dict[ObjectType, Binding] = {
    ObjectType.STUDENT: Binding(Student, _decode_student),
    ObjectType.TEACHER: Binding(Teacher, _decode_teacher),
    ObjectType.SECTION: Binding(Section, _decode_section),
    ObjectType.COURSE: Binding(Course, _decode_course, district_owned=True),
    ObjectType.TERM: Binding(Term, _decode_term, district_owned=True),
}

APPLY_ORDER: tuple[ObjectType, ...] = (
    ObjectType.TERM,
    ObjectType.COURSE,
    ObjectType.TEACHER,
    ObjectType.STUDENT,
    ObjectType.SECTION,
)
"""Full-fetch order: sections last so their memberships can resolve people."""


class Upserter:
    """Idempotent create-or-update of roster rows for one school.

    The upserter flushes but never commits; the caller owns the
    transaction and decides when a batch is durable.

    Usage:
        upserter = Upserter(session, school, district_external_id="d-1")
        result = await upserter.apply_event(event)
        print(result.action)
    """

    def __init__(
        self,
        session: AsyncSession,
        school: School,
        *,
        district_external_id: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the upserter.

        Args:
            session: Session of the school's current transaction
            school: Tenant school
            district_external_id: Source id of the school's district; when
                set, district-owned records of other districts are skipped
            clock: Source of deactivation timestamps
        """
        self._session = session
        self._school_id = school.id
        self._school_external_id = school.external_id
        self._district_external_id = district_external_id
        self._clock = clock
        self._repos: dict[ObjectType, RosterRepository[Any]] = {
            object_type: RosterRepository(session, binding.model)
            for object_type, binding in BINDINGS.items()
        }

    def repository(self, object_type: ObjectType) -> RosterRepository[Any]:
        """Repository of an object type's table."""
        return self._repos[object_type]

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def apply_event(self, event: ChangeEvent) -> ApplyResult:
        """Apply one change event.

        Created and updated events upsert the payload; deleted events
        soft-delete the row. Unsupported types are skipped, not raised.

        Raises:
            RecordValidationError: If the payload lacks a mandatory field
        """
        if not event.is_supported:
            logger.info(
                "Skipping event {} of unsupported type {}",
                event.id,
                event.raw_type or event.object_type.value,
            )
            return ApplyResult.skipped(event.object_type.value, "unsupported type", event.external_id)

        if event.action is EventAction.DELETED:
            external_id = event.external_id
            if not external_id:
                raise RecordValidationError(
                    f"Deleted {event.object_type.value} event {event.id} has no object id", field="id"
                )
            return await self.soft_delete(event.object_type, external_id)

        return await self.apply_record(event.object_type, event.payload)

    async def apply_record(self, object_type: ObjectType, record: Record) -> ApplyResult:
        """Create or update one record, reactivating it if it was inactive.

        Args:
            object_type: Normalised type of the record
            record: Bare resource dict from the API

        Returns:
            CREATED for new rows, UPDATED for existing rows (even when no
            attribute changed), SKIPPED for records of another tenant

        Raises:
            RecordValidationError: If the record lacks its id, display name
                or owning unit
        """
        binding = BINDINGS.get(object_type)
        if binding is None:
            return ApplyResult.skipped(object_type.value, "unsupported type", record.get("id"))

        decoded = binding.decode(record)
        if not self._owned_by_tenant(binding, decoded):
            return ApplyResult.skipped(object_type.value, "other tenant", decoded.external_id)

        repo = self._repos[object_type]
        row = await repo.get_by_external_id(self._school_id, decoded.external_id)
        if row is None:
            row = binding.model(school_id=self._school_id, external_id=decoded.external_id)
            repo.add(row)
            action = ApplyAction.CREATED
        else:
            action = ApplyAction.UPDATED

        for name, value in decoded.attributes.items():
            setattr(row, name, value)
        row.is_active = True
        row.deactivated_at = None
        await repo.flush()

        if object_type is ObjectType.SECTION:
            await self._rebuild_memberships(row, decoded)

        return ApplyResult(action, object_type.value, decoded.external_id, record_id=row.id)

    async def soft_delete(self, object_type: ObjectType, external_id: str) -> ApplyResult:
        """Mark a row inactive without removing it.

        Membership rows are kept until reconciliation decides on
        permanent removal. Deleting an unknown or already inactive row is
        a no-op.
        """
        repo = self._repos[object_type]
        row = await repo.get_by_external_id(self._school_id, external_id)
        if row is None:
            return ApplyResult.skipped(object_type.value, "not found", external_id)
        if not row.is_active:
            return ApplyResult.skipped(object_type.value, "already inactive", external_id)

        row.is_active = False
        row.deactivated_at = self._clock()
        await repo.flush()
        return ApplyResult(ApplyAction.DEACTIVATED, object_type.value, external_id, record_id=row.id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _owned_by_tenant(self, binding: Binding, decoded: DecodedRecord) -> bool:
        if binding.district_owned:
            return self._district_external_id is None or self._district_external_id in decoded.owners
        return self._school_external_id in decoded.owners

    async def _rebuild_memberships(self, section: Section, decoded: DecodedRecord) -> None:
        students = await self._repos[ObjectType.STUDENT].ids_by_external_id(
            self._school_id, decoded.student_ids
        )
        teachers = await self._repos[ObjectType.TEACHER].ids_by_external_id(
            self._school_id, decoded.teacher_ids
        )
        missing = (len(set(decoded.student_ids)) - len(students)) + (
            len(set(decoded.teacher_ids)) - len(teachers)
        )
        if missing:
            logger.debug(
                "Section {} references {} people not present in school {}",
                decoded.external_id,
                missing,
                self._school_external_id,
            )
        await replace_section_members(self._session, section, students.values(), teachers.values())
