"""Liveness check for the service and its database."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dropsync import __version__
from dropsync.api.deps import get_session, get_settings, get_sync_leases
from dropsync.config import Settings
from dropsync.schemas.common import CamelModel
from dropsync.services.lease_service import SyncLeaseManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(CamelModel):
    status: str
    version: str
    database: str
    dropbox_configured: bool
    active_syncs: int


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    leases: Annotated[SyncLeaseManager, Depends(get_sync_leases)],
) -> HealthResponse:
    database = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        database = "error"

    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=__version__,
        database=database,
        dropbox_configured=bool(settings.dropbox_app_key and settings.dropbox_app_secret),
        active_syncs=leases.active_count(),
    )
