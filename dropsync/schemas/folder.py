"""Folder provisioning schemas."""

from __future__ import annotations

from pydantic import Field

from dropsync.schemas.common import CamelModel


class ProvisionFolderRequest(CamelModel):
    project_id: str = Field(min_length=1)
    folder_name: str = Field(
        min_length=1, description="Folder name used when no client/project pair is given"
    )
    client_name: str | None = None
    project_name: str | None = None


class ProvisionFolderResponse(CamelModel):
    path: str
    deliveries_path: str
    folder_id: str | None = None
    folder_url: str | None = None
    deliveries_url: str | None = None
