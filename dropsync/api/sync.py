"""Sync API endpoints: run a Dropbox sync and report its history."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dropsync.api.deps import (
    get_dropbox_client,
    get_session,
    get_settings,
    get_sync_leases,
    require_org,
)
from dropsync.config import Settings
from dropsync.dropbox.client import DropboxClient
from dropsync.models.connection import DropboxConnection
from dropsync.models.sync import SyncLog
from dropsync.schemas.sync import (
    ConnectionSummary,
    SyncLogResponse,
    SyncRequest,
    SyncResponse,
    SyncStatusResponse,
)
from dropsync.services.lease_service import SyncLeaseManager
from dropsync.services.sync_service import get_sync_logs, run_sync
from dropsync.services.token_vault import require_connection, resolve_connection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dropbox", tags=["sync"])


def connection_summary(connection: DropboxConnection) -> ConnectionSummary:
    return ConnectionSummary(
        id=connection.id,
        org_id=connection.org_id,
        project_id=connection.project_id,
        account_email=connection.account_email,
        last_sync_path=connection.last_sync_path,
        last_synced_at=connection.last_synced_at,
        created_at=connection.created_at,
    )


def _log_response(log: SyncLog) -> SyncLogResponse:
    return SyncLogResponse(
        id=log.id,
        sync_path=log.sync_path,
        status=log.status,
        files_added=log.files_added,
        files_updated=log.files_updated,
        files_deleted=log.files_deleted,
        error_message=log.error_message,
        started_at=log.started_at,
        completed_at=log.completed_at,
    )


@router.post("/sync", response_model=SyncResponse)
async def sync_project(
    body: SyncRequest,
    org_id: Annotated[str, Depends(require_org)],
    session: Annotated[AsyncSession, Depends(get_session)],
    client: Annotated[DropboxClient, Depends(get_dropbox_client)],
    settings: Annotated[Settings, Depends(get_settings)],
    leases: Annotated[SyncLeaseManager, Depends(get_sync_leases)],
) -> SyncResponse:
    """Mirror the project's Dropbox folder into its file records."""
    connection = await require_connection(session, org_id, body.project_id)
    async with leases.hold(connection.id):
        result = await run_sync(
            session,
            client,
            settings,
            org_id,
            body.project_id,
            path=body.path,
            full_sync=body.full_sync,
            connection=connection,
        )
    return SyncResponse(
        files_added=result.files_added,
        files_updated=result.files_updated,
        total_processed=result.total_processed,
        sync_path=result.sync_path,
        deferred=result.deferred,
    )


@router.get("/sync", response_model=SyncStatusResponse)
async def sync_status(
    project_id: Annotated[str, Query(alias="projectId", min_length=1)],
    org_id: Annotated[str, Depends(require_org)],
    session: Annotated[AsyncSession, Depends(get_session)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> SyncStatusResponse:
    """Connection state and recent sync runs for a project."""
    connection = await resolve_connection(session, org_id, project_id)
    if connection is None:
        return SyncStatusResponse(connected=False)
    logs = await get_sync_logs(session, org_id, project_id, limit)
    return SyncStatusResponse(
        connected=True,
        connection=connection_summary(connection),
        logs=[_log_response(log) for log in logs],
    )
