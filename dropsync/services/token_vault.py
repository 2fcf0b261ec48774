"""Token vault: connection resolution, token decoding and refresh."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import or_, select

from dropsync.exceptions import NotConnected, RefreshFailed
from dropsync.models.connection import DropboxConnection
from dropsync.services.crypto_service import decrypt_value, encrypt_value
from dropsync.services.datetime_service import format_datetime, is_due, now_utc, parse_datetime

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from dropsync.config import Settings
    from dropsync.dropbox.client import DropboxClient, TokenGrant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodeStrategy:
    """One stored representation of a token, tried in priority order."""

    column: str
    encrypted: bool
    legacy_keys: bool = False


ACCESS_TOKEN_STRATEGIES: tuple[DecodeStrategy, ...] = (
    DecodeStrategy("access_token_enc", encrypted=True),
    DecodeStrategy("access_token_encrypted", encrypted=True, legacy_keys=True),
    DecodeStrategy("access_token", encrypted=False),
)

REFRESH_TOKEN_STRATEGIES: tuple[DecodeStrategy, ...] = (
    DecodeStrategy("refresh_token_enc", encrypted=True),
    DecodeStrategy("refresh_token_encrypted", encrypted=True, legacy_keys=True),
    DecodeStrategy("refresh_token", encrypted=False),
)


def pick_connection(
    candidates: Iterable[DropboxConnection],
    org_id: str | None,
    project_id: str | None,
) -> DropboxConnection | None:
    """Choose the connection that serves ``(org_id, project_id)``.

    Only rows owned by ``org_id`` are considered. An active org-wide
    connection wins over an active project connection; within a scope the
    most recently updated row wins.
    """
    owned = [c for c in candidates if c.revoked_at is None and c.org_id == org_id]
    org_scoped = [c for c in owned if org_id is not None and c.project_id is None]
    project_scoped = [c for c in owned if project_id is not None and c.project_id == project_id]
    for group in (org_scoped, project_scoped):
        if group:
            return max(group, key=lambda c: (parse_datetime(c.updated_at), c.id or 0))
    return None


async def resolve_connection(
    session: AsyncSession,
    org_id: str | None,
    project_id: str | None,
) -> DropboxConnection | None:
    """Load candidate rows for both scopes and apply ``pick_connection``."""
    scopes = []
    if org_id is not None:
        scopes.append(DropboxConnection.project_id.is_(None))
    if project_id is not None:
        scopes.append(DropboxConnection.project_id == project_id)
    if not scopes:
        return None

    stmt = select(DropboxConnection).where(
        DropboxConnection.revoked_at.is_(None),
        DropboxConnection.org_id == org_id,
        or_(*scopes),
    )
    result = await session.execute(stmt)
    return pick_connection(result.scalars().all(), org_id, project_id)


async def require_connection(
    session: AsyncSession,
    org_id: str | None,
    project_id: str | None,
) -> DropboxConnection:
    connection = await resolve_connection(session, org_id, project_id)
    if connection is None:
        raise NotConnected("Dropbox is not connected for this organization or project")
    return connection


def _decode(
    connection: DropboxConnection,
    strategies: Sequence[DecodeStrategy],
    secret_key: str,
    legacy_keys: Sequence[str],
) -> str | None:
    for strategy in strategies:
        stored = getattr(connection, strategy.column)
        if not stored:
            continue
        if not strategy.encrypted:
            return str(stored)
        fallback = legacy_keys if strategy.legacy_keys else ()
        try:
            return decrypt_value(stored, secret_key, fallback)
        except ValueError:
            logger.debug(
                "Could not decode %s for connection %s; trying next representation",
                strategy.column,
                connection.id,
            )
    return None


def get_access_token(connection: DropboxConnection, settings: Settings) -> str | None:
    """First access token representation that decodes, or None."""
    return _decode(
        connection, ACCESS_TOKEN_STRATEGIES, settings.secret_key, settings.legacy_secret_keys
    )


def get_refresh_token(connection: DropboxConnection, settings: Settings) -> str | None:
    return _decode(
        connection, REFRESH_TOKEN_STRATEGIES, settings.secret_key, settings.legacy_secret_keys
    )


def token_expiry(connection: DropboxConnection) -> str | None:
    return connection.token_expires_at or connection.expires_at


async def ensure_fresh(
    session: AsyncSession,
    client: DropboxClient,
    connection: DropboxConnection,
    settings: Settings,
) -> str:
    """Return a usable access token, refreshing it first when it is about to expire.

    The stored token is replaced only after the provider answers successfully;
    a failed refresh raises RefreshFailed and leaves the row untouched.
    """
    access_token = get_access_token(connection, settings)
    refresh_token = get_refresh_token(connection, settings)
    needs_refresh = access_token is None or is_due(
        token_expiry(connection), settings.token_refresh_skew_seconds
    )

    if needs_refresh and refresh_token:
        if not settings.dropbox_app_key or not settings.dropbox_app_secret:
            raise RefreshFailed("Dropbox app credentials are not configured")
        logger.info("Refreshing Dropbox access token for connection %s", connection.id)
        grant = await client.refresh_access_token(
            refresh_token, settings.dropbox_app_key, settings.dropbox_app_secret
        )
        await store_refreshed_token(session, connection, grant, settings)
        return grant.access_token

    if access_token is None:
        raise NotConnected("Stored Dropbox credentials could not be decoded")
    return access_token


async def store_refreshed_token(
    session: AsyncSession,
    connection: DropboxConnection,
    grant: TokenGrant,
    settings: Settings,
) -> None:
    """Write a refreshed token to every token column generation at once."""
    now = now_utc()
    margin = min(settings.token_refresh_skew_seconds, grant.expires_in // 2)
    expires_at = format_datetime(now + timedelta(seconds=grant.expires_in - margin))
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
    connection.updated_at = format_datetime(now)
    await session.commit()
