"""Tests for the Dropbox sync orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from dropsync.exceptions import (
    NotConnected,
    PathOutsideRoot,
    ProjectNotFound,
    ProviderRequestFailed,
    ReconciliationFailed,
)
from dropsync.models.files import FileRecord, SyncContainer
from dropsync.models.folder import FolderMapping
from dropsync.models.sync import SyncLog, SyncStatus
from dropsync.services.datetime_service import format_datetime, now_utc
from dropsync.services.sync_service import drain_listing, get_sync_logs, run_sync

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from conftest import FakeDropbox
    from sqlalchemy.ext.asyncio import AsyncSession

    from dropsync.config import Settings
    from dropsync.dropbox.client import DropboxClient
    from dropsync.models.connection import DropboxConnection

    MakeConnection = Callable[..., Awaitable[DropboxConnection]]

PROJECT = "proj-1"
ORG = "org-1"


async def _count(session: AsyncSession, model: type) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def _files(fake: FakeDropbox, count: int, folder: str = "/Clientes/acme/promo") -> list[dict]:
    return [fake.file_entry(f"{folder}/clip_{i:05d}.mov") for i in range(count)]


class TestDrainListing:
    async def test_cap_stops_at_drained_page_boundary(
        self, fake_dropbox: FakeDropbox, dropbox_client: DropboxClient
    ) -> None:
        fake_dropbox.install_listing(_files(fake_dropbox, 6000), page_size=1000)

        outcome = await drain_listing(dropbox_client, "tok", "/Clientes", None, max_files=5000)

        assert len(outcome.files) == 5000
        assert outcome.cursor == "cursor-5"
        assert outcome.deferred is True
        assert len(fake_dropbox.calls_to("files/list_folder/continue")) == 4

    async def test_overflowing_page_is_not_marked_drained(
        self, fake_dropbox: FakeDropbox, dropbox_client: DropboxClient
    ) -> None:
        fake_dropbox.install_listing(_files(fake_dropbox, 25), page_size=10)

        outcome = await drain_listing(dropbox_client, "tok", "/Clientes", None, max_files=15)

        assert len(outcome.files) == 15
        assert outcome.cursor == "cursor-1"
        assert outcome.deferred is True

    async def test_folders_are_skipped(
        self, fake_dropbox: FakeDropbox, dropbox_client: DropboxClient
    ) -> None:
        fake_dropbox.install_listing(
            [
                fake_dropbox.folder_entry("/Clientes/acme"),
                fake_dropbox.file_entry("/Clientes/acme/a.mov"),
            ]
        )
        outcome = await drain_listing(dropbox_client, "tok", "/Clientes", None, max_files=10)
        assert [e.name for e in outcome.files] == ["a.mov"]
        assert outcome.deferred is False

    async def test_stored_cursor_continues_listing(
        self, fake_dropbox: FakeDropbox, dropbox_client: DropboxClient
    ) -> None:
        fake_dropbox.install_listing(_files(fake_dropbox, 30), page_size=10)

        outcome = await drain_listing(dropbox_client, "tok", "/Clientes", "cursor-2", max_files=100)

        assert len(outcome.files) == 10
        assert outcome.cursor == "cursor-3"
        assert fake_dropbox.calls_to("files/list_folder") == []


class TestRunSync:
    async def test_second_run_over_same_listing_adds_nothing(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG)
        entries = [fake_dropbox.folder_entry("/Clientes/acme"), *_files(fake_dropbox, 3)]
        fake_dropbox.install_listing(entries)

        first = await run_sync(
            db_session, dropbox_client, test_settings, ORG, PROJECT, full_sync=True
        )
        second = await run_sync(
            db_session, dropbox_client, test_settings, ORG, PROJECT, full_sync=True
        )

        assert (first.files_added, first.files_updated) == (3, 0)
        assert (second.files_added, second.files_updated) == (0, 3)
        assert second.total_processed == 3
        assert await _count(db_session, FileRecord) == 3
        assert await _count(db_session, SyncContainer) == 1

    async def test_records_are_classified(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG)
        fake_dropbox.install_listing(
            [fake_dropbox.file_entry("/Clientes/acme/promo/03_POST/Promo_FINAL_v3.mp4")]
        )

        await run_sync(db_session, dropbox_client, test_settings, ORG, PROJECT)

        record = (await db_session.execute(select(FileRecord))).scalar_one()
        assert record.remote_path == "/clientes/acme/promo/03_post/promo_final_v3.mp4"
        assert record.display_path == "/Clientes/acme/promo/03_POST/Promo_FINAL_v3.mp4"
        assert (record.category, record.version_label, record.folder_phase) == (
            "final",
            "FINAL",
            "post",
        )
        assert record.mime_type == "video/mp4"
        assert record.modified_at is not None and record.modified_at.startswith("2024-03-01")
        assert record.dropbox_id == "id:/clientes/acme/promo/03_post/promo_final_v3.mp4"

    async def test_log_and_connection_state_after_success(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        connection = await make_connection(org_id=ORG)
        fake_dropbox.install_listing(_files(fake_dropbox, 2))

        result = await run_sync(
            db_session, dropbox_client, test_settings, ORG, PROJECT, path="/Clientes/acme"
        )

        assert result.sync_path == "/Clientes/acme"
        assert connection.cursor == "cursor-1"
        assert connection.last_sync_path == "/Clientes/acme"
        assert connection.last_synced_at is not None
        logs = await get_sync_logs(db_session, ORG, PROJECT)
        assert len(logs) == 1
        assert logs[0].status == SyncStatus.SUCCESS
        assert (logs[0].files_added, logs[0].files_updated, logs[0].files_deleted) == (2, 0, 0)
        assert logs[0].completed_at is not None
        mapping = (await db_session.execute(select(FolderMapping))).scalar_one()
        assert mapping.root_path == "/Clientes/acme"
        assert mapping.org_id == ORG

    async def test_capped_run_resumes_from_stored_cursor(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        settings = test_settings.model_copy(update={"sync_max_files_per_run": 20})
        connection = await make_connection(org_id=ORG)
        fake_dropbox.install_listing(_files(fake_dropbox, 35), page_size=10)

        first = await run_sync(
            db_session, dropbox_client, settings, ORG, PROJECT, path="/Clientes"
        )
        assert (first.files_added, first.deferred) == (20, True)
        assert connection.cursor == "cursor-2"

        second = await run_sync(
            db_session, dropbox_client, settings, ORG, PROJECT, path="/Clientes"
        )
        assert (second.files_added, second.deferred) == (15, False)
        assert connection.cursor == "cursor-4"
        assert len(fake_dropbox.calls_to("files/list_folder")) == 1
        assert await _count(db_session, FileRecord) == 35

    async def test_cursor_for_other_path_is_not_reused(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG, cursor="cursor-9", last_sync_path="/Clientes/other")
        fake_dropbox.install_listing(_files(fake_dropbox, 1))

        await run_sync(
            db_session, dropbox_client, test_settings, ORG, PROJECT, path="/Clientes/acme"
        )

        assert fake_dropbox.calls_to("files/list_folder")[0]["path"] == "/Clientes/acme"
        assert fake_dropbox.calls_to("files/list_folder/continue") == []

    async def test_full_sync_ignores_cursor(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG, cursor="cursor-1", last_sync_path="/Clientes/acme")
        fake_dropbox.install_listing(_files(fake_dropbox, 1))

        await run_sync(
            db_session,
            dropbox_client,
            test_settings,
            ORG,
            PROJECT,
            path="/Clientes/acme",
            full_sync=True,
        )

        assert len(fake_dropbox.calls_to("files/list_folder")) == 1
        assert fake_dropbox.calls_to("files/list_folder/continue") == []

    async def test_mapping_deliveries_path_is_preferred(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG, last_sync_path="/Clientes/old")
        now = format_datetime(now_utc())
        db_session.add(
            FolderMapping(
                project_id=PROJECT,
                org_id=ORG,
                root_path="/Clientes/acme/promo",
                deliveries_path="/Clientes/acme/promo/Deliveries",
                created_at=now,
                updated_at=now,
            )
        )
        await db_session.commit()
        fake_dropbox.install_listing([])

        result = await run_sync(db_session, dropbox_client, test_settings, ORG, PROJECT)

        assert result.sync_path == "/Clientes/acme/promo/Deliveries"
        mapping = (await db_session.execute(select(FolderMapping))).scalar_one()
        assert mapping.root_path == "/Clientes/acme/promo"

    async def test_defaults_to_account_root(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG)
        fake_dropbox.install_listing([])

        result = await run_sync(db_session, dropbox_client, test_settings, ORG, PROJECT)

        assert result.sync_path == "/"
        assert fake_dropbox.calls_to("files/list_folder")[0]["path"] == ""

    async def test_path_outside_root_fails_before_any_side_effect(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG, expires_in=-1)

        with pytest.raises(PathOutsideRoot):
            await run_sync(
                db_session, dropbox_client, test_settings, ORG, PROJECT, path="/Clientes/../Private"
            )

        assert fake_dropbox.calls == []
        assert await _count(db_session, SyncLog) == 0

    async def test_not_connected(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
    ) -> None:
        with pytest.raises(NotConnected):
            await run_sync(db_session, dropbox_client, test_settings, ORG, PROJECT)
        assert fake_dropbox.calls == []

    async def test_listing_failure_marks_log_error(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG)
        fake_dropbox.on(
            "files/list_folder", lambda _p: fake_dropbox.error(409, "path/not_found/..")
        )

        with pytest.raises(ProviderRequestFailed):
            await run_sync(db_session, dropbox_client, test_settings, ORG, PROJECT)

        log = (await db_session.execute(select(SyncLog))).scalar_one()
        assert log.status == SyncStatus.ERROR
        assert log.error_message is not None and "files/list_folder" in log.error_message
        assert log.completed_at is not None

    async def test_reconciliation_failure_keeps_earlier_records(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        connection = await make_connection(org_id=ORG)
        fake_dropbox.install_listing(
            [
                fake_dropbox.file_entry("/Clientes/a.mov"),
                fake_dropbox.file_entry("/Clientes/b.mov"),
                fake_dropbox.file_entry("/Clientes/c.mov"),
            ]
        )
        original_commit = db_session.commit

        async def flaky_commit() -> None:
            if any(isinstance(o, FileRecord) and o.filename == "b.mov" for o in db_session.new):
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            await original_commit()

        monkeypatch.setattr(db_session, "commit", flaky_commit)

        with pytest.raises(ReconciliationFailed) as exc_info:
            await run_sync(db_session, dropbox_client, test_settings, ORG, PROJECT)

        assert exc_info.value.remote_path == "/clientes/b.mov"
        records = (await db_session.execute(select(FileRecord))).scalars().all()
        assert [r.filename for r in records] == ["a.mov"]
        log = (await db_session.execute(select(SyncLog))).scalar_one()
        assert log.status == SyncStatus.ERROR
        assert log.files_added == 1
        await db_session.refresh(connection)
        assert connection.cursor is None

    async def test_cap_smaller_than_page_still_advances(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        settings = test_settings.model_copy(update={"sync_max_files_per_run": 5})
        connection = await make_connection(org_id=ORG)
        fake_dropbox.install_listing(_files(fake_dropbox, 25), page_size=10)

        first = await run_sync(
            db_session, dropbox_client, settings, ORG, PROJECT, path="/Clientes"
        )
        assert fake_dropbox.calls_to("files/list_folder")[0]["limit"] == 5
        assert (first.files_added, first.deferred) == (5, True)
        assert connection.cursor == "cursor-1"

        second = await run_sync(
            db_session, dropbox_client, settings, ORG, PROJECT, path="/Clientes"
        )
        assert second.files_added == 5
        assert connection.cursor == "cursor-2"
        assert await _count(db_session, FileRecord) == 10

    async def test_project_owned_by_other_org_is_refused(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id="org-2")
        fake_dropbox.install_listing(_files(fake_dropbox, 2))
        await run_sync(db_session, dropbox_client, test_settings, "org-2", PROJECT)
        await make_connection(org_id=ORG)

        with pytest.raises(ProjectNotFound):
            await run_sync(db_session, dropbox_client, test_settings, ORG, PROJECT)

        assert len(fake_dropbox.calls_to("files/list_folder")) == 1
        mapping = (await db_session.execute(select(FolderMapping))).scalar_one()
        assert mapping.org_id == "org-2"


class TestGetSyncLogs:
    async def test_logs_of_other_org_are_hidden(
        self,
        db_session: AsyncSession,
        dropbox_client: DropboxClient,
        fake_dropbox: FakeDropbox,
        test_settings: Settings,
        make_connection: MakeConnection,
    ) -> None:
        await make_connection(org_id=ORG)
        fake_dropbox.install_listing([])
        await run_sync(db_session, dropbox_client, test_settings, ORG, PROJECT)

        assert len(await get_sync_logs(db_session, ORG, PROJECT)) == 1
        assert await get_sync_logs(db_session, "org-2", PROJECT) == []
