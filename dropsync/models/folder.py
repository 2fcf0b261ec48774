"""Provisioned project folder mapping."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dropsync.models.base import Base


class FolderMapping(Base):
    """Where a project's files live in Dropbox, plus its shared links."""

    __tablename__ = "project_folders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    org_id: Mapped[str | None] = mapped_column(String, nullable=True)
    root_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    deliveries_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    folder_id: Mapped[str | None] = mapped_column(String, nullable=True)
    folder_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    deliveries_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)
