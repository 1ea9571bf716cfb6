"""Repository pattern implementation for database access.

This module provides repository classes that encapsulate all database
access logic, providing a clean abstraction over SQLAlchemy models.
"""

from .base import BaseRepository
from .roster import RosterRepository, replace_section_members, section_member_ids
from .schedule import SyncScheduleRepository
from .sync_lock import SyncLockRepository
from .sync_run import RunAlreadyFinishedError, SyncRunRepository
from .tenant import DistrictRepository, SchoolRepository

__all__ = [
    "BaseRepository",
    "DistrictRepository",
    "RosterRepository",
    "RunAlreadyFinishedError",
    "SchoolRepository",
    "SyncLockRepository",
    "SyncRunRepository",
    "SyncScheduleRepository",
    "replace_section_members",
    "section_member_ids",
]
