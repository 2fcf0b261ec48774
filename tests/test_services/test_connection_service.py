"""Tests for storing and revoking Dropbox connections."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from dropsync.dropbox.client import TokenGrant
from dropsync.models.connection import DropboxConnection
from dropsync.services.connection_service import revoke_connection, store_connection
from dropsync.services.datetime_service import now_utc, parse_datetime
from dropsync.services.token_vault import get_access_token, get_refresh_token, resolve_connection

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from dropsync.config import Settings


GRANT = TokenGrant(access_token="a-1", expires_in=14400, refresh_token="r-1", account_id="dbid:1")


class TestStoreConnection:
    async def test_creates_encrypted_org_connection(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        connection = await store_connection(
            db_session, test_settings, "org-1", None, GRANT, account_email="ops@acme.test"
        )

        assert connection.is_org_scope
        assert connection.access_token is None
        assert connection.refresh_token is None
        assert connection.access_token_enc == connection.access_token_encrypted
        assert get_access_token(connection, test_settings) == "a-1"
        assert get_refresh_token(connection, test_settings) == "r-1"
        assert parse_datetime(connection.token_expires_at or "") > now_utc()
        assert connection.account_email == "ops@acme.test"
        assert connection.account_id == "dbid:1"

    async def test_reconnect_updates_active_row(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        first = await store_connection(db_session, test_settings, "org-1", None, GRANT)
        second_grant = TokenGrant(access_token="a-2", expires_in=14400, refresh_token=None)
        second = await store_connection(db_session, test_settings, "org-1", None, second_grant)

        assert second.id == first.id
        assert get_access_token(second, test_settings) == "a-2"
        assert get_refresh_token(second, test_settings) == "r-1"
        rows = (await db_session.execute(select(DropboxConnection))).scalars().all()
        assert len(rows) == 1

    async def test_project_and_org_scopes_are_separate(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        org = await store_connection(db_session, test_settings, "org-1", None, GRANT)
        project = await store_connection(db_session, test_settings, "org-1", "proj-1", GRANT)
        assert org.id != project.id
        assert project.project_id == "proj-1"

    async def test_other_org_never_updates_foreign_project_row(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        theirs = await store_connection(db_session, test_settings, "org-b", "proj-b", GRANT)
        other_grant = TokenGrant(access_token="org-a-token", expires_in=14400)
        ours = await store_connection(db_session, test_settings, "org-a", "proj-b", other_grant)

        assert ours.id != theirs.id
        assert ours.org_id == "org-a"
        await db_session.refresh(theirs)
        assert theirs.org_id == "org-b"
        assert get_access_token(theirs, test_settings) == "a-1"


class TestRevokeConnection:
    async def test_revoked_connection_no_longer_resolves(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        connection = await store_connection(db_session, test_settings, "org-1", None, GRANT)

        assert await revoke_connection(db_session, connection.id, "org-1") is True

        assert connection.revoked_at is not None
        assert await resolve_connection(db_session, "org-1", None) is None

    async def test_other_org_cannot_revoke(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        connection = await store_connection(db_session, test_settings, "org-1", None, GRANT)
        assert await revoke_connection(db_session, connection.id, "org-2") is False
        assert connection.revoked_at is None

    async def test_revoking_twice(self, db_session: AsyncSession, test_settings: Settings) -> None:
        connection = await store_connection(db_session, test_settings, "org-1", None, GRANT)
        await revoke_connection(db_session, connection.id, "org-1")
        assert await revoke_connection(db_session, connection.id, "org-1") is False

    async def test_reconnect_after_revoke_creates_new_row(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        old = await store_connection(db_session, test_settings, "org-1", None, GRANT)
        await revoke_connection(db_session, old.id, "org-1")
        new = await store_connection(db_session, test_settings, "org-1", None, GRANT)
        assert new.id != old.id
