"""SQLAlchemy ORM models for Dropsync."""

from dropsync.models.base import Base
from dropsync.models.connection import DropboxConnection
from dropsync.models.files import FileRecord, SyncContainer
from dropsync.models.folder import FolderMapping
from dropsync.models.sync import SyncLog, SyncStatus

__all__ = [
    "Base",
    "DropboxConnection",
    "FileRecord",
    "FolderMapping",
    "SyncContainer",
    "SyncLog",
    "SyncStatus",
]
