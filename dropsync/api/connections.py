"""Dropbox OAuth connect flow and connection revocation."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dropsync.api.deps import (
    get_dropbox_client,
    get_oauth_state,
    get_session,
    get_settings,
    require_org,
)
from dropsync.api.sync import connection_summary
from dropsync.config import Settings
from dropsync.dropbox.client import DropboxClient, build_authorize_url
from dropsync.dropbox.oauth_state import OAuthStateStore, PendingAuthorization
from dropsync.schemas.connection import AuthorizationResponse
from dropsync.schemas.sync import ConnectionSummary
from dropsync.services.connection_service import revoke_connection, store_connection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dropbox", tags=["connections"])


def _require_app_credentials(settings: Settings) -> None:
    if not settings.dropbox_app_key or not settings.dropbox_app_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dropbox app credentials are not configured",
        )


@router.get("/connect", response_model=AuthorizationResponse)
async def connect(
    org_id: Annotated[str, Depends(require_org)],
    settings: Annotated[Settings, Depends(get_settings)],
    states: Annotated[OAuthStateStore, Depends(get_oauth_state)],
    project_id: Annotated[str | None, Query(alias="projectId")] = None,
) -> AuthorizationResponse:
    """Start authorization for an org-wide (no projectId) or project connection."""
    _require_app_credentials(settings)
    state = states.issue(PendingAuthorization(org_id=org_id, project_id=project_id or None))
    url = build_authorize_url(settings.dropbox_app_key, settings.dropbox_redirect_uri, state)
    return AuthorizationResponse(authorization_url=url)


@router.get("/callback", response_model=ConnectionSummary)
async def callback(
    code: Annotated[str, Query(min_length=1)],
    state: Annotated[str, Query(min_length=1)],
    session: Annotated[AsyncSession, Depends(get_session)],
    client: Annotated[DropboxClient, Depends(get_dropbox_client)],
    settings: Annotated[Settings, Depends(get_settings)],
    states: Annotated[OAuthStateStore, Depends(get_oauth_state)],
) -> ConnectionSummary:
    """Finish authorization: exchange the code and store the connection."""
    _require_app_credentials(settings)
    pending = states.pop(state)
    if pending is None:
        raise HTTPException(status_code=400, detail="Invalid or expired OAuth state")

    grant = await client.exchange_code(
        code,
        settings.dropbox_redirect_uri,
        settings.dropbox_app_key,
        settings.dropbox_app_secret,
    )
    email = await client.get_current_account(grant.access_token)
    connection = await store_connection(
        session, settings, pending.org_id, pending.project_id, grant, account_email=email
    )
    return connection_summary(connection)


@router.delete("/connections/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_connection(
    connection_id: int,
    org_id: Annotated[str, Depends(require_org)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Response:
    """Revoke a connection. The row is kept for auditing."""
    revoked = await revoke_connection(session, connection_id, org_id)
    if not revoked:
        raise HTTPException(status_code=404, detail="Connection not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
