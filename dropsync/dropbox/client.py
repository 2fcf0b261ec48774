"""Thin async wrapper over the Dropbox v2 HTTP API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from dropsync.exceptions import ProviderRequestFailed, RefreshFailed

logger = logging.getLogger(__name__)

DROPBOX_API = "https://api.dropboxapi.com/2"
DROPBOX_OAUTH_TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"
DROPBOX_AUTHORIZE_URL = "https://www.dropbox.com/oauth2/authorize"

# Lifetime Dropbox uses for short-lived access tokens when expires_in is absent.
DEFAULT_TOKEN_TTL_SECONDS = 14400


@dataclass
class DropboxEntry:
    """One entry of a list_folder page."""

    tag: str
    name: str
    path_lower: str
    path_display: str
    id: str | None = None
    client_modified: str | None = None
    server_modified: str | None = None
    size: int | None = None
    rev: str | None = None
    content_hash: str | None = None

    @property
    def is_file(self) -> bool:
        return self.tag == "file"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> DropboxEntry:
        path_display = str(data.get("path_display") or data.get("path_lower") or "")
        return cls(
            tag=str(data.get(".tag", "")),
            name=str(data.get("name", "")),
            path_lower=str(data.get("path_lower") or path_display.lower()),
            path_display=path_display,
            id=data.get("id"),
            client_modified=data.get("client_modified"),
            server_modified=data.get("server_modified"),
            size=data.get("size"),
            rev=data.get("rev"),
            content_hash=data.get("content_hash"),
        )


@dataclass
class ListFolderPage:
    """A page of a (possibly continued) folder listing."""

    entries: list[DropboxEntry] = field(default_factory=list)
    cursor: str = ""
    has_more: bool = False


@dataclass
class FolderMetadata:
    id: str
    path_display: str


@dataclass
class TokenGrant:
    """Result of an oauth2/token call."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    account_id: str | None = None


def _api_path(path: str) -> str:
    """Dropbox addresses the account root as the empty string, not ``/``."""
    return "" if path in ("", "/") else path


def build_authorize_url(client_id: str, redirect_uri: str, state: str) -> str:
    """Authorization URL requesting an offline (refreshable) token."""
    query = urlencode(
        {
            "client_id": client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "state": state,
            "token_access_type": "offline",
        }
    )
    return f"{DROPBOX_AUTHORIZE_URL}?{query}"


class DropboxClient:
    """Dropbox API calls used by the sync engine.

    The caller owns the ``httpx.AsyncClient`` and its timeout configuration.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_base: str = DROPBOX_API,
        token_url: str = DROPBOX_OAUTH_TOKEN_URL,
    ) -> None:
        self._http = http
        self._api_base = api_base.rstrip("/")
        self._token_url = token_url

    async def _rpc(self, token: str, endpoint: str, payload: Any) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        body = json.dumps(payload)
        try:
            resp = await self._http.post(
                f"{self._api_base}/{endpoint}", content=body, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ProviderRequestFailed(endpoint, f"HTTP error: {exc}") from exc

        if resp.status_code != 200:
            error = _error_body(resp).get("error")
            raise ProviderRequestFailed(
                endpoint,
                resp.text[:500],
                status=resp.status_code,
                error_summary=_error_summary(resp),
                error=error if isinstance(error, dict) else None,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderRequestFailed(endpoint, "response is not valid JSON") from exc
        return data if isinstance(data, dict) else {}

    async def list_folder(
        self,
        token: str,
        path: str,
        recursive: bool = True,
        limit: int | None = None,
    ) -> ListFolderPage:
        """First page of a folder listing."""
        payload: dict[str, Any] = {
            "path": _api_path(path),
            "recursive": recursive,
            "include_deleted": False,
            "include_media_info": False,
        }
        if limit is not None:
            payload["limit"] = limit
        data = await self._rpc(token, "files/list_folder", payload)
        return _page(data)

    async def list_folder_continue(self, token: str, cursor: str) -> ListFolderPage:
        """Next page of a listing identified by an opaque cursor."""
        data = await self._rpc(token, "files/list_folder/continue", {"cursor": cursor})
        return _page(data)

    async def create_folder(self, token: str, path: str) -> FolderMetadata | None:
        """Create a folder. Returns None when it already exists."""
        try:
            data = await self._rpc(
                token, "files/create_folder_v2", {"path": path, "autorename": False}
            )
        except ProviderRequestFailed as exc:
            if exc.is_conflict:
                logger.debug("Dropbox folder already exists: %s", path)
                return None
            raise
        metadata = data.get("metadata", data)
        return FolderMetadata(
            id=str(metadata.get("id", "")),
            path_display=str(metadata.get("path_display", path)),
        )

    async def create_shared_link(self, token: str, path: str) -> str | None:
        """Public shared link for ``path``, reusing an existing one when present."""
        try:
            data = await self._rpc(
                token,
                "sharing/create_shared_link_with_settings",
                {"path": path, "settings": {"requested_visibility": "public"}},
            )
        except ProviderRequestFailed as exc:
            if exc.status != 409 or "shared_link_already_exists" not in exc.error_summary:
                raise
            existing = exc.error.get("shared_link_already_exists") or {}
            url = (existing.get("metadata") or {}).get("url")
            if url:
                return str(url)
            links = await self.list_shared_links(token, path)
            return links[0] if links else None
        url = data.get("url")
        return str(url) if url else None

    async def list_shared_links(self, token: str, path: str) -> list[str]:
        data = await self._rpc(
            token, "sharing/list_shared_links", {"path": path, "direct_only": True}
        )
        return [str(link["url"]) for link in data.get("links", []) if link.get("url")]

    async def get_temporary_link(self, token: str, path: str) -> str | None:
        """Short-lived direct link, or None when Dropbox cannot provide one now."""
        try:
            data = await self._rpc(token, "files/get_temporary_link", {"path": path})
        except ProviderRequestFailed as exc:
            logger.info("Temporary link unavailable for %s: %s", path, exc)
            return None
        link = data.get("link")
        return str(link) if link else None

    async def get_current_account(self, token: str) -> str | None:
        """Email of the connected account; None when the lookup fails."""
        try:
            data = await self._rpc(token, "users/get_current_account", None)
        except ProviderRequestFailed:
            logger.warning("Dropbox account lookup failed", exc_info=True)
            return None
        email = data.get("email")
        return str(email) if email else None

    async def refresh_access_token(
        self, refresh_token: str, client_id: str, client_secret: str
    ) -> TokenGrant:
        """Exchange a refresh token for a new short-lived access token."""
        try:
            data = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": client_id,
                    "client_secret": client_secret,
                }
            )
        except ProviderRequestFailed as exc:
            raise RefreshFailed(str(exc)) from exc
        return _grant(data)

    async def exchange_code(
        self, code: str, redirect_uri: str, client_id: str, client_secret: str
    ) -> TokenGrant:
        """Exchange an OAuth authorization code for tokens."""
        data = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client_id,
                "client_secret": client_secret,
            }
        )
        return _grant(data)

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        endpoint = "oauth2/token"
        try:
            resp = await self._http.post(self._token_url, data=form)
        except httpx.HTTPError as exc:
            raise ProviderRequestFailed(endpoint, f"HTTP error: {exc}") from exc
        if resp.status_code != 200:
            raise ProviderRequestFailed(
                endpoint,
                resp.text[:200],
                status=resp.status_code,
                error_summary=_error_summary(resp),
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderRequestFailed(endpoint, "response is not valid JSON") from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ProviderRequestFailed(endpoint, "token response missing access_token")
        return data


def _error_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_summary(resp: httpx.Response) -> str:
    body = _error_body(resp)
    if not body:
        return resp.text[:200]
    return str(body.get("error_summary", ""))


def _page(data: dict[str, Any]) -> ListFolderPage:
    return ListFolderPage(
        entries=[DropboxEntry.from_api(e) for e in data.get("entries", [])],
        cursor=str(data.get("cursor", "")),
        has_more=bool(data.get("has_more", False)),
    )


def _grant(data: dict[str, Any]) -> TokenGrant:
    try:
        expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS)
    except (TypeError, ValueError):
        expires_in = DEFAULT_TOKEN_TTL_SECONDS
    return TokenGrant(
        access_token=str(data["access_token"]),
        expires_in=expires_in,
        refresh_token=data.get("refresh_token"),
        account_id=data.get("account_id"),
    )
