"""Pydantic schemas for Roster Sync.

This module provides source payload parsing and read models.
"""

from .base import CleverModel, SchemaBase
from .clever_api import (
    CleverCourse,
    CleverEvent,
    CleverEventData,
    CleverLink,
    CleverName,
    CleverPage,
    CleverSchool,
    CleverSection,
    CleverTerm,
    CleverTokenResponse,
    CleverUser,
)
from .sync import LockInfoRead, SchoolRead, SyncRunRead

__all__ = [
    "CleverCourse",
    "CleverEvent",
    "CleverEventData",
    "CleverLink",
    "CleverModel",
    "CleverName",
    "CleverPage",
    "CleverSchool",
    "CleverSection",
    "CleverTerm",
    "CleverTokenResponse",
    "CleverUser",
    "LockInfoRead",
    "SchemaBase",
    "SchoolRead",
    "SyncRunRead",
]
