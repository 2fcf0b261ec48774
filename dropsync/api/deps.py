"""Shared API dependencies: settings, DB session, Dropbox client, tenant scope."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from dropsync.config import Settings
from dropsync.dropbox.client import DropboxClient
from dropsync.dropbox.oauth_state import OAuthStateStore
from dropsync.services.lease_service import SyncLeaseManager


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_dropbox_client(request: Request) -> DropboxClient:
    client: DropboxClient = request.app.state.dropbox_client
    return client


def get_sync_leases(request: Request) -> SyncLeaseManager:
    leases: SyncLeaseManager = request.app.state.sync_leases
    return leases


def get_oauth_state(request: Request) -> OAuthStateStore:
    store: OAuthStateStore = request.app.state.dropbox_oauth_state
    return store


async def require_org(
    x_org_id: Annotated[str | None, Header()] = None,
) -> str:
    """Organization of the caller, as asserted by the fronting auth layer.

    Raises 401 when the header is missing or blank.
    """
    org_id = (x_org_id or "").strip()
    if not org_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Organization context required",
        )
    return org_id
