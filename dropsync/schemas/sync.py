"""Sync request and response schemas."""

from __future__ import annotations

from pydantic import Field

from dropsync.schemas.common import CamelModel


class SyncRequest(CamelModel):
    """Request to sync a project's Dropbox folder."""

    project_id: str = Field(min_length=1, description="Project whose files are mirrored")
    path: str | None = Field(
        default=None, description="Folder to sync; must lie inside the tenant root"
    )
    full_sync: bool = Field(default=False, description="Ignore the stored cursor")


class SyncResponse(CamelModel):
    files_added: int
    files_updated: int
    total_processed: int
    sync_path: str
    deferred: bool = False


class SyncLogResponse(CamelModel):
    id: int
    sync_path: str | None = None
    status: str
    files_added: int
    files_updated: int
    files_deleted: int
    error_message: str | None = None
    started_at: str
    completed_at: str | None = None


class ConnectionSummary(CamelModel):
    """Connection details safe to show to clients."""

    id: int
    org_id: str | None = None
    project_id: str | None = None
    account_email: str | None = None
    last_sync_path: str | None = None
    last_synced_at: str | None = None
    created_at: str


class SyncStatusResponse(CamelModel):
    connected: bool
    connection: ConnectionSummary | None = None
    logs: list[SyncLogResponse] = Field(default_factory=list)
