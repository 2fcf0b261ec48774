"""Project ownership: which organization a project's Dropbox data belongs to.

The project's ``FolderMapping`` row carries the owning ``org_id``. A mapping
without an owner is adopted by the first organization that syncs it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from dropsync.exceptions import ProjectNotFound
from dropsync.models.folder import FolderMapping
from dropsync.services.datetime_service import format_datetime, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def get_project_mapping(session: AsyncSession, project_id: str) -> FolderMapping | None:
    stmt = select(FolderMapping).where(FolderMapping.project_id == project_id)
    return (await session.execute(stmt)).scalar_one_or_none()


def check_project_owner(mapping: FolderMapping | None, org_id: str | None) -> None:
    """Raise ProjectNotFound when ``mapping`` is owned by a different organization."""
    if mapping is not None and mapping.org_id is not None and mapping.org_id != org_id:
        raise ProjectNotFound(f"Project {mapping.project_id} not found")


async def claim_project(
    session: AsyncSession, org_id: str | None, project_id: str
) -> FolderMapping:
    """Return the project's mapping for ``org_id``, creating or adopting it."""
    mapping = await get_project_mapping(session, project_id)
    check_project_owner(mapping, org_id)
    now = format_datetime(now_utc())
    if mapping is None:
        mapping = FolderMapping(
            project_id=project_id, org_id=org_id, created_at=now, updated_at=now
        )
        session.add(mapping)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            mapping = await get_project_mapping(session, project_id)
            check_project_owner(mapping, org_id)
            assert mapping is not None
        return mapping
    if mapping.org_id is None and org_id is not None:
        logger.info("Project %s adopted by org %s", project_id, org_id)
        mapping.org_id = org_id
        mapping.updated_at = now
        await session.commit()
    return mapping
