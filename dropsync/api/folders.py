"""Folder provisioning endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dropsync.api.deps import get_dropbox_client, get_session, get_settings, require_org
from dropsync.config import Settings
from dropsync.dropbox.client import DropboxClient
from dropsync.schemas.folder import ProvisionFolderRequest, ProvisionFolderResponse
from dropsync.services.provision_service import provision_project_folder

router = APIRouter(prefix="/api/dropbox", tags=["folders"])


@router.post("/provision-folder", response_model=ProvisionFolderResponse)
async def provision_folder(
    body: ProvisionFolderRequest,
    org_id: Annotated[str, Depends(require_org)],
    session: Annotated[AsyncSession, Depends(get_session)],
    client: Annotated[DropboxClient, Depends(get_dropbox_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ProvisionFolderResponse:
    """Create the project's folder tree in Dropbox and share it."""
    result = await provision_project_folder(
        session,
        client,
        settings,
        org_id,
        body.project_id,
        body.folder_name,
        client_name=body.client_name,
        project_name=body.project_name,
    )
    return ProvisionFolderResponse(
        path=result.path,
        deliveries_path=result.deliveries_path,
        folder_id=result.folder_id,
        folder_url=result.folder_url,
        deliveries_url=result.deliveries_url,
    )
