"""Synced file records and their per-project container."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dropsync.models.base import Base


class SyncContainer(Base):
    """Sentinel row anchoring synced files that belong to no explicit deliverable."""

    __tablename__ = "sync_containers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)


class FileRecord(Base):
    """Local mirror of one remote file, keyed by (project_id, remote_path)."""

    __tablename__ = "dropbox_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    container_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("sync_containers.id", ondelete="SET NULL"), nullable=True
    )
    remote_path: Mapped[str] = mapped_column(Text, nullable=False)
    display_path: Mapped[str] = mapped_column(Text, nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    version_label: Mapped[str | None] = mapped_column(String, nullable=True)
    folder_phase: Mapped[str] = mapped_column(String, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String, nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    modified_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    dropbox_id: Mapped[str | None] = mapped_column(String, nullable=True)
    rev: Mapped[str | None] = mapped_column(String, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (UniqueConstraint("project_id", "remote_path"),)
