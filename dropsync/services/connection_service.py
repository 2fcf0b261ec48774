"""Dropbox connection service: store authorized credentials and revoke them."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select

from dropsync.models.connection import DropboxConnection
from dropsync.services.crypto_service import encrypt_value
from dropsync.services.datetime_service import format_datetime, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from dropsync.config import Settings
    from dropsync.dropbox.client import TokenGrant

logger = logging.getLogger(__name__)


async def get_active_connection(
    session: AsyncSession,
    org_id: str | None,
    project_id: str | None,
) -> DropboxConnection | None:
    """Newest active row owned by ``org_id`` for exactly this scope.

    The scope is org-wide when ``project_id`` is None.
    """
    stmt = select(DropboxConnection).where(
        DropboxConnection.revoked_at.is_(None),
        DropboxConnection.org_id == org_id,
    )
    if project_id is None:
        stmt = stmt.where(DropboxConnection.project_id.is_(None))
    else:
        stmt = stmt.where(DropboxConnection.project_id == project_id)
    stmt = stmt.order_by(DropboxConnection.updated_at.desc(), DropboxConnection.id.desc())
    result = await session.execute(stmt)
    return result.scalars().first()


async def store_connection(
    session: AsyncSession,
    settings: Settings,
    org_id: str | None,
    project_id: str | None,
    grant: TokenGrant,
    account_email: str | None = None,
) -> DropboxConnection:
    """Save freshly authorized tokens for a scope.

    The active row for the scope is updated in place when one exists;
    otherwise a new row is created. Tokens are only stored encrypted.
    """
    now = now_utc()
    now_str = format_datetime(now)
    margin = min(settings.token_refresh_skew_seconds, grant.expires_in // 2)
    expires_at = format_datetime(now + timedelta(seconds=grant.expires_in - margin))

    connection = await get_active_connection(session, org_id, project_id)
    if connection is None:
        connection = DropboxConnection(org_id=org_id, project_id=project_id, created_at=now_str)
        session.add(connection)

    encrypted = encrypt_value(grant.access_token, settings.secret_key)
    connection.access_token_enc = encrypted
    connection.access_token_encrypted = encrypted
    connection.access_token = None
    if grant.refresh_token:
        encrypted_refresh = encrypt_value(grant.refresh_token, settings.secret_key)
        connection.refresh_token_enc = encrypted_refresh
        connection.refresh_token_encrypted = encrypted_refresh
        connection.refresh_token = None
    connection.token_expires_at = expires_at
    connection.expires_at = expires_at
    connection.account_id = grant.account_id or connection.account_id
    connection.account_email = account_email or connection.account_email
    connection.updated_at = now_str
    await session.commit()
    await session.refresh(connection)
    logger.info(
        "Stored Dropbox connection %s (org=%s, project=%s)", connection.id, org_id, project_id
    )
    return connection


async def revoke_connection(
    session: AsyncSession,
    connection_id: int,
    org_id: str,
) -> bool:
    """Mark a connection revoked. Returns True if an active row was found."""
    stmt = select(DropboxConnection).where(
        DropboxConnection.id == connection_id,
        DropboxConnection.org_id == org_id,
        DropboxConnection.revoked_at.is_(None),
    )
    result = await session.execute(stmt)
    connection = result.scalar_one_or_none()
    if connection is None:
        return False
    now = format_datetime(now_utc())
    connection.revoked_at = now
    connection.updated_at = now
    await session.commit()
    logger.info("Revoked Dropbox connection %s", connection_id)
    return True
