"""Application-level exception types.

Convention:
- ``StorageSyncError`` subclasses describe failures of the storage engine.
  Each carries a stable ``code`` and an HTTP ``status_code``; the global
  handler in ``dropsync/main.py`` renders them as ``{"error", "code"}``.
- ``InternalServerError`` is for errors whose details must never reach
  clients. The handler logs the full message and returns a generic 500.
- ``ValueError`` is for input validation errors that are safe to forward.
"""

from __future__ import annotations

from typing import Any


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients."""


class StorageSyncError(Exception):
    """Base class for remote-storage engine failures."""

    code = "DROPBOX_ERROR"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class NotConnected(StorageSyncError):
    """No usable Dropbox connection exists for the requested scope."""

    code = "DROPBOX_NOT_CONNECTED"
    status_code = 404


class PathOutsideRoot(StorageSyncError):
    """A derived path escapes the tenant root folder."""

    code = "DROPBOX_PATH_OUTSIDE_ROOT"
    status_code = 400

    def __init__(self, root: str, candidate: str) -> None:
        super().__init__(f"Path {candidate!r} is outside root {root!r}")
        self.root = root
        self.candidate = candidate


class RefreshFailed(StorageSyncError):
    """The provider rejected or failed an access token refresh."""

    code = "DROPBOX_REFRESH_FAILED"
    status_code = 502


class ProviderRequestFailed(StorageSyncError):
    """A Dropbox API call returned an error or could not be sent."""

    code = "DROPBOX_REQUEST_FAILED"
    status_code = 500

    def __init__(
        self,
        endpoint: str,
        message: str,
        status: int | None = None,
        error_summary: str = "",
        error: dict[str, Any] | None = None,
    ) -> None:
        detail = f"Dropbox {endpoint} error"
        if status is not None:
            detail += f" ({status})"
        super().__init__(f"{detail}: {message}")
        self.endpoint = endpoint
        self.status = status
        self.error_summary = error_summary
        # The structured ``error`` union from the response body, when present.
        self.error = error or {}

    @property
    def is_conflict(self) -> bool:
        """True when the provider reports that the target already exists."""
        summary = self.error_summary.lower()
        return self.status == 409 and ("conflict" in summary or "already_exists" in summary)


class ReconciliationFailed(StorageSyncError):
    """Writing a file record failed in the middle of a sync run."""

    code = "DROPBOX_RECONCILIATION_FAILED"
    status_code = 500

    def __init__(self, remote_path: str, cause: Exception) -> None:
        super().__init__(f"Failed to reconcile {remote_path}: {cause}")
        self.remote_path = remote_path


class SyncInProgress(StorageSyncError):
    """Another run already holds the sync lease for this connection."""

    code = "DROPBOX_SYNC_IN_PROGRESS"
    status_code = 409


class ProjectNotFound(StorageSyncError):
    """The project belongs to another organization or is unknown to the caller's."""

    code = "DROPBOX_PROJECT_NOT_FOUND"
    status_code = 404
