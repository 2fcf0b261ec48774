"""Folder provisioner: create a project's Dropbox folder tree and share it."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dropsync.dropbox.paths import (
    assert_inside_root,
    join,
    normalize_root,
    parent_path,
    project_path,
    sanitize_folder_name,
)
from dropsync.models.folder import FolderMapping
from dropsync.services.datetime_service import format_datetime, now_utc
from dropsync.services.project_service import check_project_owner, get_project_mapping
from dropsync.services.token_vault import ensure_fresh, require_connection

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from dropsync.config import Settings
    from dropsync.dropbox.client import DropboxClient

logger = logging.getLogger(__name__)

DELIVERIES_FOLDER = "Deliveries"
SUBFOLDERS = (DELIVERIES_FOLDER, "Brief", "References", "Assets", "Archive")


@dataclass
class ProvisionResult:
    path: str
    deliveries_path: str
    folder_id: str | None = None
    folder_url: str | None = None
    deliveries_url: str | None = None


def resolve_project_folder(
    root: str,
    folder_name: str,
    client_name: str | None = None,
    project_name: str | None = None,
) -> str:
    """Target folder for a project, guarded against escaping ``root``."""
    tenant_root = normalize_root(root)
    if client_name and client_name.strip() and project_name and project_name.strip():
        candidate = project_path(tenant_root, client_name, project_name)
    else:
        name = sanitize_folder_name(folder_name)
        if not name:
            raise ValueError("folderName is required")
        candidate = join(tenant_root, name)
    return assert_inside_root(tenant_root, candidate)


async def _upsert_mapping(
    session: AsyncSession,
    mapping: FolderMapping | None,
    org_id: str | None,
    project_id: str,
    result: ProvisionResult,
) -> FolderMapping:
    now = format_datetime(now_utc())
    if mapping is None:
        mapping = FolderMapping(project_id=project_id, created_at=now)
        session.add(mapping)
    mapping.org_id = org_id
    mapping.root_path = result.path
    mapping.base_path = parent_path(result.path)
    mapping.deliveries_path = result.deliveries_path
    mapping.folder_id = result.folder_id or mapping.folder_id
    mapping.folder_url = result.folder_url
    mapping.deliveries_url = result.deliveries_url
    mapping.updated_at = now
    await session.commit()
    return mapping


async def provision_project_folder(
    session: AsyncSession,
    client: DropboxClient,
    settings: Settings,
    org_id: str | None,
    project_id: str,
    folder_name: str,
    client_name: str | None = None,
    project_name: str | None = None,
) -> ProvisionResult:
    """Create the project folder, its standard subfolders and shared links.

    Existing folders are accepted as they are. The path and the project owner
    are checked before any remote call, so PathOutsideRoot and ProjectNotFound
    leave Dropbox untouched.
    """
    path = resolve_project_folder(
        settings.dropbox_root_path, folder_name, client_name, project_name
    )
    mapping = await get_project_mapping(session, project_id)
    check_project_owner(mapping, org_id)
    connection = await require_connection(session, org_id, project_id)
    token = await ensure_fresh(session, client, connection, settings)

    logger.info("Provisioning Dropbox folder %s for project %s", path, project_id)
    metadata = await client.create_folder(token, path)
    await asyncio.gather(*(client.create_folder(token, join(path, sub)) for sub in SUBFOLDERS))

    deliveries_path = join(path, DELIVERIES_FOLDER)
    folder_url, deliveries_url = await asyncio.gather(
        client.create_shared_link(token, path),
        client.create_shared_link(token, deliveries_path),
    )

    result = ProvisionResult(
        path=path,
        deliveries_path=deliveries_path,
        folder_id=metadata.id if metadata is not None else None,
        folder_url=folder_url,
        deliveries_url=deliveries_url,
    )
    await _upsert_mapping(session, mapping, org_id, project_id, result)
    return result
