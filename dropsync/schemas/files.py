"""Synced file schemas."""

from __future__ import annotations

from dropsync.schemas.common import CamelModel


class FileRecordResponse(CamelModel):
    id: int
    project_id: str
    remote_path: str
    display_path: str
    filename: str
    category: str
    version_label: str | None = None
    folder_phase: str
    mime_type: str | None = None
    size_bytes: int | None = None
    modified_at: str | None = None
    updated_at: str


class PreviewResponse(CamelModel):
    url: str | None = None
