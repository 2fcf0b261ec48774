"""Shared test fixtures for Dropsync."""

from __future__ import annotations

import json
import posixpath
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

import httpx
import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from dropsync.config import Settings
from dropsync.dropbox.client import DropboxClient
from dropsync.models import Base, DropboxConnection
from dropsync.services.crypto_service import encrypt_value
from dropsync.services.datetime_service import format_datetime, now_utc

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from pathlib import Path

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"


class FakeDropbox:
    """In-memory stand-in for the Dropbox HTTP API behind ``httpx.MockTransport``.

    Handlers are registered per endpoint (``files/list_folder``, ``oauth2/token``...)
    and receive the decoded request payload.
    """

    def __init__(self) -> None:
        self.handlers: dict[str, Callable[[Any], httpx.Response]] = {}
        self.calls: list[tuple[str, Any]] = []

    @staticmethod
    def file_entry(path: str, **extra: Any) -> dict[str, Any]:
        """A ``files/list_folder`` file entry as Dropbox returns it."""
        entry: dict[str, Any] = {
            ".tag": "file",
            "name": posixpath.basename(path),
            "path_lower": path.lower(),
            "path_display": path,
            "id": f"id:{path.lower()}",
            "client_modified": "2024-03-01T10:00:00Z",
            "server_modified": "2024-03-01T10:00:05Z",
            "rev": "015f9a",
            "size": 1024,
            "content_hash": "a" * 64,
        }
        entry.update(extra)
        return entry

    @staticmethod
    def folder_entry(path: str) -> dict[str, Any]:
        return {
            ".tag": "folder",
            "name": posixpath.basename(path),
            "path_lower": path.lower(),
            "path_display": path,
            "id": f"id:{path.lower()}",
        }

    @staticmethod
    def error(status: int, summary: str) -> httpx.Response:
        return httpx.Response(status, json={"error_summary": summary, "error": {".tag": "other"}})

    def on(self, endpoint: str, handler: Callable[[Any], httpx.Response]) -> None:
        self.handlers[endpoint] = handler

    def respond(self, endpoint: str, status: int = 200, body: Any = None) -> None:
        self.on(endpoint, lambda _payload: httpx.Response(status, json=body))

    def calls_to(self, endpoint: str) -> list[Any]:
        return [payload for name, payload in self.calls if name == endpoint]

    def install_listing(self, entries: list[dict[str, Any]], page_size: int = 1000) -> None:
        """Serve ``entries`` as pages with cursors ``cursor-<pages consumed>``.

        A ``limit`` sent with ``files/list_folder`` shrinks the page size.
        """
        size = page_size

        def page(index: int) -> httpx.Response:
            end = (index + 1) * size
            return httpx.Response(
                200,
                json={
                    "entries": entries[index * size : end],
                    "cursor": f"cursor-{index + 1}",
                    "has_more": end < len(entries),
                },
            )

        def first(payload: dict[str, Any]) -> httpx.Response:
            nonlocal size
            size = min(page_size, payload.get("limit") or page_size)
            return page(0)

        self.on("files/list_folder", first)
        self.on(
            "files/list_folder/continue",
            lambda payload: page(int(payload["cursor"].rsplit("-", 1)[1])),
        )

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = request.content.decode()
        if path == "/oauth2/token":
            endpoint = "oauth2/token"
            payload: Any = dict(parse_qsl(body))
        else:
            endpoint = path.removeprefix("/2/")
            payload = json.loads(body) if body else None
        self.calls.append((endpoint, payload))
        handler = self.handlers.get(endpoint)
        if handler is None:
            return self.error(400, f"unexpected_endpoint/{endpoint}")
        return handler(payload)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        dropbox_app_key="test-app-key",
        dropbox_app_secret="test-app-secret",
        dropbox_root_path="/Clientes",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with all tables."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_dropbox() -> FakeDropbox:
    return FakeDropbox()


@pytest.fixture
async def http_client(fake_dropbox: FakeDropbox) -> AsyncGenerator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_dropbox.handle)) as client:
        yield client


@pytest.fixture
def dropbox_client(http_client: httpx.AsyncClient) -> DropboxClient:
    return DropboxClient(http_client)


@pytest.fixture
def make_connection(
    db_session: AsyncSession,
) -> Callable[..., Awaitable[DropboxConnection]]:
    """Factory storing a connection whose access token expires in an hour by default."""

    async def _make(
        org_id: str | None = "org-1",
        project_id: str | None = None,
        access_token: str | None = "access-1",
        refresh_token: str | None = "refresh-1",
        expires_in: int = 3600,
        **columns: Any,
    ) -> DropboxConnection:
        now = now_utc()
        connection = DropboxConnection(
            org_id=org_id,
            project_id=project_id,
            access_token_enc=(
                encrypt_value(access_token, TEST_SECRET_KEY) if access_token else None
            ),
            refresh_token_enc=(
                encrypt_value(refresh_token, TEST_SECRET_KEY) if refresh_token else None
            ),
            token_expires_at=format_datetime(now + timedelta(seconds=expires_in)),
            created_at=format_datetime(now),
            updated_at=format_datetime(now),
        )
        for key, value in columns.items():
            setattr(connection, key, value)
        db_session.add(connection)
        await db_session.commit()
        return connection

    return _make
