"""Read schemas for sync history, locks and schools."""

from datetime import datetime

from pydantic import Field

from roster_sync.db.models import RunStatus, SyncMode, TriggerSource

from .base import SchemaBase


class SyncRunRead(SchemaBase):
    """Schema for reading a sync run."""

    id: int
    scope: str
    parent_run_id: int | None
    school_id: int | None
    district_id: int | None
    mode: SyncMode | None
    trigger: TriggerSource
    initiated_by: str | None
    status: RunStatus
    started_at: datetime
    ended_at: datetime | None
    records_processed: int
    records_failed: int
    records_created: int
    records_updated: int
    records_deleted: int
    last_cursor: str | None
    error_message: str | None
    duration_seconds: float | None = Field(default=None, description="Elapsed seconds, once ended")


class LockInfoRead(SchemaBase):
    """Schema for reading a live sync lock."""

    scope: str
    holder_id: str
    initiated_by: str | None
    hostname: str | None
    acquired_at: datetime
    expires_at: datetime
    last_heartbeat: datetime


class SchoolRead(SchemaBase):
    """Schema for reading a school's sync state."""

    id: int
    district_id: int
    external_id: str
    name: str
    is_active: bool
    requires_full_sync: bool
    event_cursor: str | None
    last_full_sync_at: datetime | None
    last_incremental_sync_at: datetime | None
