"""Database module for Roster Sync."""

from roster_sync.db.engine import (
    configure_sqlite,
    create_tables,
    dispose_engine,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    make_session_factory,
)
from roster_sync.db.models import (
    ROSTER_MODELS,
    Base,
    Course,
    District,
    RosterRecord,
    RunStatus,
    School,
    Section,
    Student,
    SyncLockEntry,
    SyncMode,
    SyncRun,
    SyncSchedule,
    Teacher,
    Term,
    TriggerSource,
    student_sections,
    teacher_sections,
)
from roster_sync.db.repositories import (
    BaseRepository,
    DistrictRepository,
    RosterRepository,
    SchoolRepository,
    SyncLockRepository,
    SyncRunRepository,
    SyncScheduleRepository,
)

__all__ = [
    # Models
    "ROSTER_MODELS",
    "Base",
    "Course",
    "District",
    "RosterRecord",
    "RunStatus",
    "School",
    "Section",
    "Student",
    "SyncLockEntry",
    "SyncMode",
    "SyncRun",
    "SyncSchedule",
    "Teacher",
    "Term",
    "TriggerSource",
    "student_sections",
    "teacher_sections",
    # Engine
    "configure_sqlite",
    "create_tables",
    "dispose_engine",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "make_session_factory",
    # Repositories
    "BaseRepository",
    "DistrictRepository",
    "RosterRepository",
    "SchoolRepository",
    "SyncLockRepository",
    "SyncRunRepository",
    "SyncScheduleRepository",
]
