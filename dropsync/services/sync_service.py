"""Sync orchestrator: mirror a Dropbox folder into a project's file records.

A run moves through ``SyncState`` in order:
resolve connection and path, refresh the token, open a pending log, list and
drain pages, reconcile each file, persist the cursor, close the log. Every
record write is committed on its own; a failure stops the run but keeps what
was already written.

Two runs for the same connection must not overlap: callers hold a
``SyncLease`` from ``lease_service`` around ``run_sync``.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from dropsync.dropbox.paths import assert_inside_root, normalize_path, normalize_root
from dropsync.exceptions import ReconciliationFailed
from dropsync.models.connection import DropboxConnection
from dropsync.models.files import FileRecord, SyncContainer
from dropsync.models.folder import FolderMapping
from dropsync.models.sync import SyncLog, SyncStatus
from dropsync.services.classifier import categorize
from dropsync.services.datetime_service import format_datetime, now_utc, parse_datetime
from dropsync.services.project_service import (
    check_project_owner,
    claim_project,
    get_project_mapping,
)
from dropsync.services.token_vault import ensure_fresh, require_connection

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from dropsync.config import Settings
    from dropsync.dropbox.client import DropboxClient, DropboxEntry

logger = logging.getLogger(__name__)

SYNC_CONTAINER_TITLE = "Dropbox sync"
# Largest page Dropbox accepts for files/list_folder.
MAX_PAGE_SIZE = 2000


class SyncState(StrEnum):
    IDLE = "idle"
    LISTING = "listing"
    DRAINING = "draining"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ListingOutcome:
    """Files collected from a listing and the cursor of the last fully drained page."""

    files: list[DropboxEntry] = field(default_factory=list)
    cursor: str | None = None
    deferred: bool = False


@dataclass
class SyncResult:
    project_id: str
    sync_path: str
    log_id: int | None = None
    state: SyncState = SyncState.IDLE
    files_added: int = 0
    files_updated: int = 0
    cursor: str | None = None
    deferred: bool = False

    @property
    def total_processed(self) -> int:
        return self.files_added + self.files_updated

    def advance(self, state: SyncState) -> None:
        logger.debug(
            "Sync %s for project %s: %s -> %s", self.log_id, self.project_id, self.state, state
        )
        self.state = state


def resolve_sync_path(
    settings: Settings,
    connection: DropboxConnection,
    mapping: FolderMapping | None,
    explicit_path: str | None,
) -> str:
    """Pick the folder to sync.

    Preference: an explicit path (checked against the tenant root), then the
    project's deliveries, root and base paths, then the connection's last
    sync path, then the account root.
    """
    if explicit_path and explicit_path.strip():
        root = normalize_root(settings.dropbox_root_path)
        return assert_inside_root(root, explicit_path)
    if mapping is not None:
        for candidate in (mapping.deliveries_path, mapping.root_path, mapping.base_path):
            if candidate:
                return normalize_path(candidate)
    if connection.last_sync_path:
        return normalize_path(connection.last_sync_path)
    return "/"


async def drain_listing(
    client: DropboxClient,
    token: str,
    path: str,
    stored_cursor: str | None,
    max_files: int,
    page_size: int | None = None,
) -> ListingOutcome:
    """List ``path`` (or continue from ``stored_cursor``) until done or the file cap is hit.

    Pages are fetched strictly one after another. When a page would push the
    total past ``max_files`` the run stops there, and the returned cursor is
    the one preceding that page so the next run lists it again. Pages are
    requested no larger than ``max_files`` so every run drains at least one.
    """
    limit = min(page_size or MAX_PAGE_SIZE, max_files, MAX_PAGE_SIZE)
    if stored_cursor:
        page = await client.list_folder_continue(token, stored_cursor)
    else:
        page = await client.list_folder(token, path, recursive=True, limit=limit)

    outcome = ListingOutcome(cursor=stored_cursor)
    while True:
        page_files = [entry for entry in page.entries if entry.is_file]
        room = max_files - len(outcome.files)
        if len(page_files) > room:
            outcome.files.extend(page_files[:room])
            outcome.deferred = True
            logger.warning(
                "Sync of %s reached the %d file cap mid-page; remaining entries deferred",
                path,
                max_files,
            )
            return outcome

        outcome.files.extend(page_files)
        outcome.cursor = page.cursor
        if not page.has_more:
            return outcome
        if len(outcome.files) >= max_files:
            outcome.deferred = True
            logger.info("Sync of %s reached the %d file cap; next pages deferred", path, max_files)
            return outcome
        page = await client.list_folder_continue(token, page.cursor)


async def ensure_sync_container(session: AsyncSession, project_id: str) -> SyncContainer:
    """Return the project's sentinel container, creating it on first use."""
    stmt = select(SyncContainer).where(SyncContainer.project_id == project_id)
    container = (await session.execute(stmt)).scalar_one_or_none()
    if container is not None:
        return container

    container = SyncContainer(
        project_id=project_id,
        title=SYNC_CONTAINER_TITLE,
        created_at=format_datetime(now_utc()),
    )
    session.add(container)
    try:
        await session.commit()
    except IntegrityError:
        # Created by a concurrent run in the meantime.
        await session.rollback()
        return (await session.execute(stmt)).scalar_one()
    return container


def _modified_at(entry: DropboxEntry) -> str | None:
    raw = entry.client_modified or entry.server_modified
    if not raw:
        return None
    try:
        return format_datetime(parse_datetime(raw))
    except ValueError:
        logger.debug("Unparsable modification time %r for %s", raw, entry.path_display)
        return None


def _record_values(entry: DropboxEntry, container_id: int) -> dict[str, object]:
    classification = categorize(entry.name, entry.path_display)
    mime_type, _ = mimetypes.guess_type(entry.name)
    return {
        "container_id": container_id,
        "display_path": entry.path_display,
        "filename": entry.name,
        "category": classification.category,
        "version_label": classification.version_label,
        "folder_phase": classification.folder_phase,
        "mime_type": mime_type,
        "size_bytes": entry.size,
        "modified_at": _modified_at(entry),
        "dropbox_id": entry.id,
        "rev": entry.rev,
        "content_hash": entry.content_hash,
    }


async def reconcile_files(
    session: AsyncSession,
    result: SyncResult,
    container: SyncContainer,
    files: Sequence[DropboxEntry],
) -> None:
    """Upsert one record per file keyed by (project_id, remote_path).

    Counts on ``result`` only include writes that were committed.
    """
    for entry in files:
        remote_path = entry.path_lower
        values = _record_values(entry, container.id)
        now = format_datetime(now_utc())
        try:
            stmt = select(FileRecord).where(
                FileRecord.project_id == result.project_id,
                FileRecord.remote_path == remote_path,
            )
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is None:
                session.add(
                    FileRecord(
                        project_id=result.project_id,
                        remote_path=remote_path,
                        created_at=now,
                        updated_at=now,
                        **values,
                    )
                )
                added = True
            else:
                for key, value in values.items():
                    setattr(record, key, value)
                record.updated_at = now
                added = False
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise ReconciliationFailed(remote_path, exc) from exc

        if added:
            result.files_added += 1
        else:
            result.files_updated += 1


async def _persist_progress(
    session: AsyncSession,
    connection: DropboxConnection,
    mapping: FolderMapping,
    result: SyncResult,
) -> None:
    now = format_datetime(now_utc())
    connection.cursor = result.cursor
    connection.last_sync_path = result.sync_path
    connection.last_synced_at = now
    connection.updated_at = now
    if not mapping.root_path:
        mapping.root_path = result.sync_path
    mapping.updated_at = now
    await session.commit()


async def _start_log(
    session: AsyncSession, connection: DropboxConnection, project_id: str, sync_path: str
) -> SyncLog:
    log = SyncLog(
        connection_id=connection.id,
        project_id=project_id,
        sync_path=sync_path,
        status=SyncStatus.PENDING,
        started_at=format_datetime(now_utc()),
    )
    session.add(log)
    await session.commit()
    return log


async def _finish_log(
    session: AsyncSession,
    log_id: int,
    result: SyncResult,
    error: str | None = None,
) -> None:
    log = await session.get(SyncLog, log_id)
    if log is None:
        logger.error("Sync log %s disappeared before completion", log_id)
        return
    log.status = SyncStatus.ERROR if error is not None else SyncStatus.SUCCESS
    log.files_added = result.files_added
    log.files_updated = result.files_updated
    log.files_deleted = 0
    log.error_message = error
    log.completed_at = format_datetime(now_utc())
    await session.commit()


async def run_sync(
    session: AsyncSession,
    client: DropboxClient,
    settings: Settings,
    org_id: str | None,
    project_id: str,
    path: str | None = None,
    full_sync: bool = False,
    connection: DropboxConnection | None = None,
) -> SyncResult:
    """Run one sync for ``project_id`` and return its counts.

    NotConnected, ProjectNotFound, PathOutsideRoot and RefreshFailed are
    raised before the log row exists. Later failures are recorded on the log and re-raised.
    """
    if connection is None:
        connection = await require_connection(session, org_id, project_id)
    mapping = await get_project_mapping(session, project_id)
    check_project_owner(mapping, org_id)
    sync_path = resolve_sync_path(settings, connection, mapping, path)
    token = await ensure_fresh(session, client, connection, settings)
    mapping = await claim_project(session, org_id, project_id)

    log = await _start_log(session, connection, project_id, sync_path)
    log_id = log.id
    result = SyncResult(project_id=project_id, sync_path=sync_path, log_id=log_id)
    logger.info(
        "Sync %s started for project %s at %s (full=%s)", log_id, project_id, sync_path, full_sync
    )

    # A stored cursor only describes the folder it was issued for.
    stored_cursor = None
    if not full_sync and connection.cursor and connection.last_sync_path == sync_path:
        stored_cursor = connection.cursor

    try:
        result.advance(SyncState.LISTING)
        listing = await drain_listing(
            client,
            token,
            sync_path,
            stored_cursor,
            settings.sync_max_files_per_run,
            settings.dropbox_page_size,
        )
        result.advance(SyncState.DRAINING)
        result.cursor = listing.cursor
        result.deferred = listing.deferred

        result.advance(SyncState.RECONCILING)
        container = await ensure_sync_container(session, project_id)
        await reconcile_files(session, result, container, listing.files)

        result.advance(SyncState.PERSISTING)
        await _persist_progress(session, connection, mapping, result)
    except Exception as exc:
        result.advance(SyncState.FAILED)
        logger.exception("Sync %s for project %s failed", log_id, project_id)
        await session.rollback()
        await _finish_log(session, log_id, result, error=str(exc))
        raise

    await _finish_log(session, log_id, result)
    result.advance(SyncState.DONE)
    logger.info(
        "Sync %s finished: %d added, %d updated%s",
        log_id,
        result.files_added,
        result.files_updated,
        " (more pending)" if result.deferred else "",
    )
    return result


async def get_sync_logs(
    session: AsyncSession, org_id: str | None, project_id: str, limit: int = 20
) -> list[SyncLog]:
    """Most recent sync logs written for ``org_id`` on a project, newest first."""
    stmt = (
        select(SyncLog)
        .join(DropboxConnection, DropboxConnection.id == SyncLog.connection_id)
        .where(SyncLog.project_id == project_id, DropboxConnection.org_id == org_id)
        .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
