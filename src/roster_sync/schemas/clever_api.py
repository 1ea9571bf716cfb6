"""Pydantic schemas for parsing Clever API v3.0 responses.

These schemas map to the Clever data API envelope and resource shapes.
Identity fields are optional at parse time; required-field checks are
made by the upserter so a bad record is reported instead of aborting
the page it arrived on.
See: https://dev.clever.com/docs/api-overview
"""

from datetime import datetime
from typing import Any

from pydantic import Field

from .base import CleverModel


# ------------------------------------------------------------------------------
# Envelope
# ------------------------------------------------------------------------------
class CleverLink(CleverModel):
    """Pagination link from a list response."""

    rel: str = Field(description="Link relation (next, prev, self)")
    uri: str = Field(description="Relative URI including the API version prefix")


class CleverPage(CleverModel):
    """One page of a list endpoint: `{data: [{data: {...}}], links: [...]}`."""

    data: list[dict[str, Any]] = Field(default_factory=list, description="Wrapped records")
    links: list[CleverLink] = Field(default_factory=list, description="Pagination links")

    @property
    def records(self) -> list[dict[str, Any]]:
        """Unwrap `{data: {...}}` items into bare resource dicts."""
        unwrapped: list[dict[str, Any]] = []
        for item in self.data:
            inner = item.get("data") if isinstance(item, dict) else None
            unwrapped.append(inner if isinstance(inner, dict) else item)
        return unwrapped

    @property
    def next_uri(self) -> str | None:
        """URI of the next page, if the server advertised one."""
        for link in self.links:
            if link.rel == "next":
                return link.uri
        return None


class CleverTokenResponse(CleverModel):
    """OAuth2 client-credentials token response."""

    access_token: str = Field(min_length=1, description="Bearer token value")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_in: int = Field(default=0, description="Lifetime in seconds (<= 0: non-expiring)")


# ------------------------------------------------------------------------------
# Resources
# ------------------------------------------------------------------------------
class CleverName(CleverModel):
    """Person name."""

    first: str | None = None
    middle: str | None = None
    last: str | None = None

    @property
    def display(self) -> str:
        """First and last name joined, empty if neither is present."""
        return " ".join(part for part in (self.first, self.last) if part)


class CleverStudentRole(CleverModel):
    """`roles.student` block of a user record."""

    sis_id: str | None = None
    student_number: str | None = None
    state_id: str | None = None
    grade: str | None = None
    graduation_year: str | None = None
    school: str | None = None
    schools: list[str] = Field(default_factory=list)


class CleverTeacherRole(CleverModel):
    """`roles.teacher` block of a user record."""

    sis_id: str | None = None
    teacher_number: str | None = None
    title: str | None = None
    school: str | None = None
    schools: list[str] = Field(default_factory=list)


class CleverRoles(CleverModel):
    """Role blocks of a v3.0 user record."""

    student: CleverStudentRole | None = None
    teacher: CleverTeacherRole | None = None


class CleverUser(CleverModel):
    """User record (students and teachers share the `users` resource)."""

    id: str | None = None
    name: CleverName = Field(default_factory=CleverName)
    email: str | None = None
    district: str | None = None
    last_modified: datetime | None = None
    roles: CleverRoles = Field(default_factory=CleverRoles)


class CleverSection(CleverModel):
    """Section (class period) record."""

    id: str | None = None
    school: str | None = None
    district: str | None = None
    course: str | None = None
    term_id: str | None = None
    name: str | None = None
    sis_id: str | None = None
    section_number: str | None = None
    period: str | None = None
    subject: str | None = None
    grade: str | None = None
    teacher: str | None = None
    teachers: list[str] = Field(default_factory=list)
    students: list[str] = Field(default_factory=list)
    last_modified: datetime | None = None


class CleverCourse(CleverModel):
    """Course catalog record."""

    id: str | None = None
    district: str | None = None
    name: str | None = None
    number: str | None = None
    last_modified: datetime | None = None


class CleverTerm(CleverModel):
    """Academic term record."""

    id: str | None = None
    district: str | None = None
    name: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    last_modified: datetime | None = None


class CleverSchool(CleverModel):
    """School record from the `schools` endpoint."""

    id: str
    district: str | None = None
    name: str = ""
    sis_id: str | None = None
    school_number: str | None = None


# ------------------------------------------------------------------------------
# Events
# ------------------------------------------------------------------------------
class CleverEventData(CleverModel):
    """`data` block of an event: the object kind plus its new state."""

    object: str | dict[str, Any] | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    previous_attributes: dict[str, Any] | None = None


class CleverEvent(CleverModel):
    """Raw change-feed event: `{id, type: "object.action", created, data}`."""

    id: str = Field(min_length=1, description="Event id, ordered within the feed")
    type: str = Field(description="'<object>.<action>', e.g. 'users.updated'")
    created: datetime | None = Field(default=None, description="Informational timestamp")
    data: CleverEventData = Field(default_factory=CleverEventData)
