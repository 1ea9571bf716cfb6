"""SQLAlchemy ORM models for Roster Sync.

Two groups of tables live here:
- Orchestration state: districts, schools, sync runs, locks, schedules
- Tenant roster data: students, teachers, sections, courses, terms and
  the section membership join tables

Every roster row belongs to exactly one school (the tenant) and is
correlated with the source by `external_id`, unique within that school.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    declared_attr,
    mapped_column,
    relationship,
)

from .types import UTCDateTime, utc_now


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {datetime: UTCDateTime()}


class SyncMode(str, Enum):
    """How a school's data is brought up to date."""

    FULL = "full"  # fetch everything, then reconcile
    INCREMENTAL = "incremental"  # apply change events since the cursor
    RECONCILIATION = "reconciliation"  # requested full fetch + reconcile


class RunStatus(str, Enum):
    """Lifecycle status of a sync run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"  # lock held elsewhere

    @property
    def is_terminal(self) -> bool:
        """True once the run can no longer change."""
        return self is not RunStatus.RUNNING


class TriggerSource(str, Enum):
    """What started a sync."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    CLI = "cli"


# ------------------------------------------------------------------------------
# Orchestration: District / School
# ------------------------------------------------------------------------------
class District(Base):
    """A source organisation; the parent scope of its schools."""

    __tablename__ = "districts"

    id: Mapped[int] = mapped_column(primary_key=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    time_zone: Mapped[str] = mapped_column(String(64), default="UTC")  # IANA name
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    schools: Mapped[list["School"]] = relationship(back_populates="district")
    schedules: Mapped[list["SyncSchedule"]] = relationship(
        back_populates="district",
        cascade="all, delete-orphan",
    )

    @property
    def scope(self) -> str:
        """Lock/report scope key."""
        return f"district:{self.id}"

    def __repr__(self) -> str:
        return f"<District(id={self.id}, external_id='{self.external_id}')>"


class School(Base):
    """A tenant: one school whose roster is replicated."""

    __tablename__ = "schools"

    id: Mapped[int] = mapped_column(primary_key=True)
    district_id: Mapped[int] = mapped_column(ForeignKey("districts.id", ondelete="CASCADE"))
    external_id: Mapped[str] = mapped_column(String(64), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(default=True)

    # --------------------------------------------------------------------------
    # Sync state
    # --------------------------------------------------------------------------
    requires_full_sync: Mapped[bool] = mapped_column(default=True)
    event_cursor: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_full_sync_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_incremental_sync_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    district: Mapped["District"] = relationship(back_populates="schools")

    @property
    def scope(self) -> str:
        """Lock/report scope key."""
        return f"school:{self.id}"

    def __repr__(self) -> str:
        return f"<School(id={self.id}, external_id='{self.external_id}')>"


# ------------------------------------------------------------------------------
# Section membership join tables
# ------------------------------------------------------------------------------
student_sections = Table(
    "student_sections",
    Base.metadata,
    Column("section_id", ForeignKey("sections.id", ondelete="CASCADE"), primary_key=True),
    Column("student_id", ForeignKey("students.id", ondelete="CASCADE"), primary_key=True),
)

teacher_sections = Table(
    "teacher_sections",
    Base.metadata,
    Column("section_id", ForeignKey("sections.id", ondelete="CASCADE"), primary_key=True),
    Column("teacher_id", ForeignKey("teachers.id", ondelete="CASCADE"), primary_key=True),
)


# ------------------------------------------------------------------------------
# Roster records
# ------------------------------------------------------------------------------
class RosterRecord:
    """Columns shared by every replicated roster table.

    `is_active` and `deactivated_at` are written only by the upserter and
    the reconciler.
    """

    id: Mapped[int] = mapped_column(primary_key=True)

    @declared_attr
    def school_id(cls) -> Mapped[int]:
        return mapped_column(ForeignKey("schools.id", ondelete="CASCADE"), index=True)

    external_id: Mapped[str] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(default=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    source_last_modified: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(id={self.id}, external_id='{self.external_id}', "
            f"active={self.is_active})>"
        )


class Student(RosterRecord, Base):
    """Student replicated from a `users` record with a student role."""

    __tablename__ = "students"

    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    middle_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sis_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    student_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    state_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    graduation_year: Mapped[str | None] = mapped_column(String(10), nullable=True)

    sections: Mapped[list["Section"]] = relationship(
        secondary=student_sections,
        back_populates="students",
    )

    __table_args__ = (UniqueConstraint("school_id", "external_id", name="uq_student_school_ext"),)


class Teacher(RosterRecord, Base):
    """Teacher replicated from a `users` record with a teacher role."""

    __tablename__ = "teachers"

    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sis_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    teacher_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str | None] = mapped_column(String(100), nullable=True)

    sections: Mapped[list["Section"]] = relationship(
        secondary=teacher_sections,
        back_populates="teachers",
    )

    __table_args__ = (UniqueConstraint("school_id", "external_id", name="uq_teacher_school_ext"),)


class Section(RosterRecord, Base):
    """Class section; memberships are rebuilt on every upsert."""

    __tablename__ = "sections"

    name: Mapped[str] = mapped_column(String(200))
    sis_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    section_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    period: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(100), nullable=True)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Source references kept as ids; courses and terms are separate tables
    course_external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    term_external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    primary_teacher_external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    students: Mapped[list["Student"]] = relationship(
        secondary=student_sections,
        back_populates="sections",
    )
    teachers: Mapped[list["Teacher"]] = relationship(
        secondary=teacher_sections,
        back_populates="sections",
    )

    __table_args__ = (UniqueConstraint("school_id", "external_id", name="uq_section_school_ext"),)


class Course(RosterRecord, Base):
    """Course catalog entry."""

    __tablename__ = "courses"

    name: Mapped[str] = mapped_column(String(200))
    number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (UniqueConstraint("school_id", "external_id", name="uq_course_school_ext"),)


class Term(RosterRecord, Base):
    """Academic term."""

    __tablename__ = "terms"

    name: Mapped[str] = mapped_column(String(200))
    start_date: Mapped[str | None] = mapped_column(String(10), nullable=True)  # YYYY-MM-DD
    end_date: Mapped[str | None] = mapped_column(String(10), nullable=True)

    __table_args__ = (UniqueConstraint("school_id", "external_id", name="uq_term_school_ext"),)


# ------------------------------------------------------------------------------
# SyncRun model (append-only history)
# ------------------------------------------------------------------------------
class SyncRun(Base):
    """One sync execution for a scope.

    Created when the run starts, updated only by the orchestrator that
    owns the run, and never changed after its status becomes terminal.
    """

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    scope: Mapped[str] = mapped_column(String(100))
    parent_run_id: Mapped[int | None] = mapped_column(
        ForeignKey("sync_runs.id", ondelete="SET NULL"),
        nullable=True,
    )
    district_id: Mapped[int | None] = mapped_column(
        ForeignKey("districts.id", ondelete="SET NULL"),
        nullable=True,
    )
    school_id: Mapped[int | None] = mapped_column(
        ForeignKey("schools.id", ondelete="SET NULL"),
        nullable=True,
    )

    mode: Mapped[SyncMode | None] = mapped_column(nullable=True)  # None for parent runs
    trigger: Mapped[TriggerSource] = mapped_column(default=TriggerSource.MANUAL)
    initiated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[RunStatus] = mapped_column(default=RunStatus.RUNNING)

    started_at: Mapped[datetime] = mapped_column(default=utc_now)
    ended_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Counters
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, default=0)
    records_created: Mapped[int] = mapped_column(Integer, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, default=0)
    records_deleted: Mapped[int] = mapped_column(Integer, default=0)

    last_cursor: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_sync_runs_scope_started", "scope", "started_at"),
        Index("ix_sync_runs_school_status", "school_id", "status"),
    )

    @property
    def duration_seconds(self) -> float | None:
        """Elapsed time, once ended."""
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def __repr__(self) -> str:
        return f"<SyncRun(id={self.id}, scope='{self.scope}', status={self.status.value})>"


# ------------------------------------------------------------------------------
# SyncLockEntry model
# ------------------------------------------------------------------------------
class SyncLockEntry(Base):
    """Fencing record held while a scope is being synced.

    The scope is the primary key, so at most one entry per scope can
    exist; claiming a lock is a single insert that fails if it does.
    """

    __tablename__ = "sync_locks"

    scope: Mapped[str] = mapped_column(String(100), primary_key=True)
    holder_id: Mapped[str] = mapped_column(String(64))
    initiated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    hostname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    acquired_at: Mapped[datetime] = mapped_column(default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(index=True)
    last_heartbeat: Mapped[datetime] = mapped_column(default=utc_now)

    def __repr__(self) -> str:
        return f"<SyncLockEntry(scope='{self.scope}', holder='{self.holder_id}')>"


# ------------------------------------------------------------------------------
# SyncSchedule model
# ------------------------------------------------------------------------------
WEEKDAY_ABBREVIATIONS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


class SyncSchedule(Base):
    """A daily (or weekday-filtered) sync time in the district's local zone."""

    __tablename__ = "sync_schedules"

    id: Mapped[int] = mapped_column(primary_key=True)
    district_id: Mapped[int] = mapped_column(ForeignKey("districts.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(100))
    local_hour: Mapped[int] = mapped_column()  # 0-23
    local_minute: Mapped[int] = mapped_column(default=0)  # 0-59
    days_of_week: Mapped[str] = mapped_column(String(50), default="Daily")  # "Daily" or "Mon,Wed"
    is_enabled: Mapped[bool] = mapped_column(default=True)
    last_triggered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    district: Mapped["District"] = relationship(back_populates="schedules")

    def _days(self) -> list[str]:
        return [d.strip() for d in (self.days_of_week or "").split(",") if d.strip()]

    def runs_every_day(self) -> bool:
        """True for blank or "Daily" schedules."""
        return not self._days() or self.days_of_week.strip().lower() == "daily"

    def should_run_on(self, weekday: int) -> bool:
        """Check a weekday (Monday == 0) against the schedule's days."""
        if self.runs_every_day():
            return True
        wanted = WEEKDAY_ABBREVIATIONS[weekday].lower()
        return any(day.lower() == wanted for day in self._days())

    @property
    def display_time(self) -> str:
        """Local time as "H:MM AM/PM"."""
        hour12 = 12 if self.local_hour % 12 == 0 else self.local_hour % 12
        suffix = "AM" if self.local_hour < 12 else "PM"
        return f"{hour12}:{self.local_minute:02d} {suffix}"

    @property
    def display_days(self) -> str:
        """Days as "Daily", "Weekdays", "Weekends" or a list."""
        if self.runs_every_day():
            return "Daily"
        days = {d.lower() for d in self._days()}
        if days == {d.lower() for d in WEEKDAY_ABBREVIATIONS[:5]}:
            return "Weekdays"
        if days == {d.lower() for d in WEEKDAY_ABBREVIATIONS[5:]}:
            return "Weekends"
        return ", ".join(self._days())

    def __repr__(self) -> str:
        return f"<SyncSchedule(id={self.id}, district={self.district_id}, at={self.display_time})>"


ROSTER_MODELS: tuple[type[RosterRecord], ...] = (Student, Teacher, Section, Course, Term)
"""Roster tables subject to upsert and reconciliation."""
