"""Change-feed consumption and event classification.

Events arrive as `{id, type: "<object>.<action>", data: {object, data,
previous_attributes}}`. Each event is normalised once, at parse time,
into a ChangeEvent whose `object_type` selects the upsert routine that
handles it. Feed order (event id order) is authoritative; the `created`
timestamp is informational only.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from roster_sync.logging import get_logger
from roster_sync.schemas.clever_api import CleverEvent

if TYPE_CHECKING:
    from .client import CleverClient

logger = get_logger(__name__)

EVENTS_ENDPOINT = "events"


class ObjectType(StrEnum):
    """Normalised kind of object an event refers to."""

    STUDENT = "student"
    TEACHER = "teacher"
    SECTION = "section"
    COURSE = "course"
    TERM = "term"
    SCHOOL = "school"
    DISTRICT = "district"
    UNKNOWN = "unknown"


class EventAction(StrEnum):
    """What happened to the object."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


def _singular(name: str) -> str:
    name = name.strip().lower()
    return name[:-1] if name.endswith("s") else name


def resolve_object_type(
    type_prefix: str,
    declared: str | dict[str, Any] | None,
    payload: dict[str, Any],
) -> tuple[ObjectType, str]:
    """Resolve the object type of an event.

    The declared `data.object` wins over the `type` prefix. Generic user
    events are narrowed to student or teacher by the role blocks in the
    payload.

    Args:
        type_prefix: Part of the event type before the dot
        declared: The event's `data.object` (string or structured value)
        payload: The object's new state

    Returns:
        Tuple of (resolved type, raw name used for logging)
    """
    if isinstance(declared, dict):
        raw = str(declared.get("type") or declared.get("object") or type_prefix)
    elif isinstance(declared, str) and declared:
        raw = declared
    else:
        raw = type_prefix

    name = _singular(raw)
    if name == "user":
        roles = payload.get("roles") or {}
        if "student" in roles:
            return ObjectType.STUDENT, raw
        if "teacher" in roles:
            return ObjectType.TEACHER, raw
        return ObjectType.UNKNOWN, raw

    try:
        return ObjectType(name), raw
    except ValueError:
        return ObjectType.UNKNOWN, raw


@dataclass(frozen=True)
class ChangeEvent:
    """One classified change-feed entry."""

    id: str
    """Feed position; the cursor after this event is applied."""

    object_type: ObjectType
    """Normalised object kind."""

    action: EventAction | None
    """Action, or None when the type suffix is not recognised."""

    payload: dict[str, Any] = field(default_factory=dict)
    """New state of the object (for deletes, its last known state)."""

    previous_attributes: dict[str, Any] | None = None
    """Changed attributes' previous values (updates only)."""

    created: datetime | None = None
    """Informational upstream timestamp."""

    raw_type: str = ""
    """Event type as sent, e.g. "users.updated"."""

    @property
    def external_id(self) -> str | None:
        """Source id of the affected object."""
        value = self.payload.get("id")
        return str(value) if value is not None else None

    @property
    def is_supported(self) -> bool:
        """True when some upsert routine can apply this event."""
        return self.action is not None and self.object_type in (
            ObjectType.STUDENT,
            ObjectType.TEACHER,
            ObjectType.SECTION,
            ObjectType.COURSE,
            ObjectType.TERM,
        )

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> ChangeEvent:
        """Parse and classify a raw event.

        Raises:
            ValidationError: If the event has no id or type
        """
        event = CleverEvent.model_validate(raw)
        prefix, _, suffix = event.type.rpartition(".")
        payload = event.data.data
        object_type, _ = resolve_object_type(prefix or event.type, event.data.object, payload)
        try:
            action: EventAction | None = EventAction(suffix.lower())
        except ValueError:
            action = None

        return cls(
            id=event.id,
            object_type=object_type,
            action=action,
            payload=payload,
            previous_attributes=event.data.previous_attributes,
            created=event.created,
            raw_type=event.type,
        )


class ChangeFeedReader:
    """Read the change feed from a cursor.

    Usage:
        reader = ChangeFeedReader(client, max_pages=10)
        async for event in reader.read_events_since("school:4", cursor):
            await upserter.apply_event(event)
            cursor = event.id
    """

    def __init__(self, client: CleverClient, *, max_pages: int | None = None) -> None:
        """Initialize the reader.

        Args:
            client: Retrying API client
            max_pages: Upper bound on pages per call; None reads to the end
        """
        self._client = client
        self._max_pages = max_pages
        self.skipped_malformed = 0

    async def read_events_since(
        self,
        scope: str,
        cursor: str | None,
    ) -> AsyncIterator[ChangeEvent]:
        """Yield events after `cursor`, in feed order.

        The sequence is finite (bounded by `max_pages`) and restartable:
        calling again with the id of any yielded event resumes right after
        it. Entries without an id or type are logged and dropped.

        Args:
            scope: Scope key used for log context
            cursor: Last applied event id, or None to read from the start

        Yields:
            Classified ChangeEvent objects
        """
        params = {"starting_after": cursor} if cursor else None
        records, next_page = await self._client.fetch_page(EVENTS_ENDPOINT, params=params)
        pages = 1

        while True:
            for raw in records:
                try:
                    yield ChangeEvent.from_raw(raw)
                except ValidationError:
                    self.skipped_malformed += 1
                    logger.warning("[{}] Dropping malformed event: {}", scope, raw.get("id"))

            if next_page is None:
                return
            if self._max_pages is not None and pages >= self._max_pages:
                logger.info("[{}] Event page limit ({}) reached; resuming next run", scope, pages)
                return

            records, next_page = await self._client.fetch_page(EVENTS_ENDPOINT, next_page)
            pages += 1

    async def latest_event_id(self) -> str | None:
        """Id of the newest event in the feed, used as a baseline cursor.

        Returns:
            Event id, or None if the feed is empty
        """
        records, _ = await self._client.fetch_page(
            EVENTS_ENDPOINT,
            params={"ending_before": "last", "limit": 1},
        )
        ids = [str(r["id"]) for r in records if r.get("id")]
        return ids[-1] if ids else None
