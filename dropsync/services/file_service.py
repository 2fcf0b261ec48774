"""Read access to synced file records.

Records are visible to the organization that owns the project's folder
mapping; other organizations see nothing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from dropsync.models.files import FileRecord
from dropsync.models.folder import FolderMapping
from dropsync.services.token_vault import ensure_fresh, require_connection

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from dropsync.config import Settings
    from dropsync.dropbox.client import DropboxClient


def _owned_by(org_id: str) -> Select[tuple[FileRecord]]:
    return select(FileRecord).join(
        FolderMapping,
        (FolderMapping.project_id == FileRecord.project_id) & (FolderMapping.org_id == org_id),
    )


async def list_files(
    session: AsyncSession,
    org_id: str,
    project_id: str,
    category: str | None = None,
) -> list[FileRecord]:
    """A project's file records ordered by display path."""
    stmt = _owned_by(org_id).where(FileRecord.project_id == project_id)
    if category is not None:
        stmt = stmt.where(FileRecord.category == category)
    stmt = stmt.order_by(FileRecord.display_path)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_file(session: AsyncSession, org_id: str, file_id: int) -> FileRecord | None:
    stmt = _owned_by(org_id).where(FileRecord.id == file_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_preview_link(
    session: AsyncSession,
    client: DropboxClient,
    settings: Settings,
    org_id: str,
    record: FileRecord,
) -> str | None:
    """Temporary download link for a record, or None when Dropbox has none."""
    connection = await require_connection(session, org_id, record.project_id)
    token = await ensure_fresh(session, client, connection, settings)
    return await client.get_temporary_link(token, record.remote_path)
