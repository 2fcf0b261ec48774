"""Synced file browsing and preview endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dropsync.api.deps import get_dropbox_client, get_session, get_settings, require_org
from dropsync.config import Settings
from dropsync.dropbox.client import DropboxClient
from dropsync.models.files import FileRecord
from dropsync.schemas.files import FileRecordResponse, PreviewResponse
from dropsync.services.file_service import get_file, get_preview_link, list_files

router = APIRouter(prefix="/api/dropbox/files", tags=["files"])


def _file_response(record: FileRecord) -> FileRecordResponse:
    return FileRecordResponse(
        id=record.id,
        project_id=record.project_id,
        remote_path=record.remote_path,
        display_path=record.display_path,
        filename=record.filename,
        category=record.category,
        version_label=record.version_label,
        folder_phase=record.folder_phase,
        mime_type=record.mime_type,
        size_bytes=record.size_bytes,
        modified_at=record.modified_at,
        updated_at=record.updated_at,
    )


@router.get("", response_model=list[FileRecordResponse])
async def project_files(
    project_id: Annotated[str, Query(alias="projectId", min_length=1)],
    org_id: Annotated[str, Depends(require_org)],
    session: Annotated[AsyncSession, Depends(get_session)],
    category: Annotated[str | None, Query()] = None,
) -> list[FileRecordResponse]:
    records = await list_files(session, org_id, project_id, category)
    return [_file_response(r) for r in records]


@router.get("/{file_id}/preview", response_model=PreviewResponse)
async def preview_file(
    file_id: int,
    org_id: Annotated[str, Depends(require_org)],
    session: Annotated[AsyncSession, Depends(get_session)],
    client: Annotated[DropboxClient, Depends(get_dropbox_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> PreviewResponse:
    """Short-lived link to the file's content; ``url`` is null when unavailable."""
    record = await get_file(session, org_id, file_id)
    if record is None:
        raise HTTPException(status_code=404, detail="File not found")
    url = await get_preview_link(session, client, settings, org_id, record)
    return PreviewResponse(url=url)
