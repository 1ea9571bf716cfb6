"""Builders for Clever API v3.0 payloads.

Records are returned bare (as CleverClient yields them); `page()` wraps
them in the list-endpoint envelope for HTTP-level tests.
"""

from typing import Any


def student_record(
    id: str = "stu-1",
    *,
    school: str | None = "s-1",
    schools: list[str] | None = None,
    first: str | None = "Ada",
    last: str | None = "Lovelace",
    grade: str | None = "9",
    **extra: Any,
) -> dict[str, Any]:
    """A `users` record with a student role."""
    return {
        "id": id,
        "district": "d-1",
        "name": {"first": first, "last": last},
        "email": f"{id}@example.org",
        "roles": {
            "student": {
                "school": school,
                "schools": schools if schools is not None else ([school] if school else []),
                "grade": grade,
                "sis_id": f"sis-{id}",
            }
        },
        **extra,
    }


def teacher_record(
    id: str = "tch-1",
    *,
    school: str | None = "s-1",
    first: str | None = "Grace",
    last: str | None = "Hopper",
    **extra: Any,
) -> dict[str, Any]:
    """A `users` record with a teacher role."""
    return {
        "id": id,
        "district": "d-1",
        "name": {"first": first, "last": last},
        "roles": {
            "teacher": {
                "school": school,
                "schools": [school] if school else [],
                "title": "Teacher",
            }
        },
        **extra,
    }


def section_record(
    id: str = "sec-1",
    *,
    school: str | None = "s-1",
    name: str | None = "Algebra I",
    students: list[str] | None = None,
    teachers: list[str] | None = None,
    teacher: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """A `sections` record."""
    return {
        "id": id,
        "school": school,
        "district": "d-1",
        "name": name,
        "course": "crs-1",
        "term_id": "trm-1",
        "teacher": teacher,
        "teachers": teachers or [],
        "students": students or [],
        **extra,
    }


def course_record(id: str = "crs-1", *, district: str | None = "d-1", name: str = "Algebra") -> dict[str, Any]:
    """A `courses` record."""
    return {"id": id, "district": district, "name": name, "number": "MATH-101"}


def term_record(id: str = "trm-1", *, district: str | None = "d-1", name: str = "Fall 2025") -> dict[str, Any]:
    """A `terms` record."""
    return {
        "id": id,
        "district": district,
        "name": name,
        "start_date": "2025-08-15",
        "end_date": "2025-12-19",
    }


def school_record(id: str = "s-1", *, district: str = "d-1", name: str | None = None) -> dict[str, Any]:
    """A `schools` record."""
    return {"id": id, "district": district, "name": name or f"School {id}"}


def event(
    id: str,
    type: str,
    data: dict[str, Any],
    *,
    object: str | None = None,
    previous: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """A raw change-feed event."""
    block: dict[str, Any] = {"data": data}
    if object is not None:
        block["object"] = object
    if previous is not None:
        block["previous_attributes"] = previous
    return {"id": id, "type": type, "created": "2025-09-01T12:00:00Z", "data": block}


def page(records: list[dict[str, Any]], next_uri: str | None = None) -> dict[str, Any]:
    """Wrap records in the list-endpoint envelope."""
    links = [{"rel": "self", "uri": "/v3.0/self"}]
    if next_uri is not None:
        links.append({"rel": "next", "uri": next_uri})
    return {"data": [{"data": r, "uri": f"/v3.0/x/{r.get('id')}"} for r in records], "links": links}


def token_response(access_token: str = "tok-1", expires_in: int = 3600) -> dict[str, Any]:
    """OAuth2 client-credentials token response."""
    return {"access_token": access_token, "token_type": "bearer", "expires_in": expires_in}
