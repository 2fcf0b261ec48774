"""Dropbox connection model."""

from __future__ import annotations

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dropsync.models.base import Base


class DropboxConnection(Base):
    """Stored OAuth credential pair for an organization or a single project.

    Token columns come in three generations: ``*_enc`` (current ciphertext),
    ``*_encrypted`` (legacy ciphertext) and the bare plaintext column. Rows are
    never deleted; revocation sets ``revoked_at``.
    """

    __tablename__ = "dropbox_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str | None] = mapped_column(String, nullable=True)
    project_id: Mapped[str | None] = mapped_column(String, nullable=True)

    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    account_email: Mapped[str | None] = mapped_column(String, nullable=True)

    cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    revoked_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_dropbox_connections_org", "org_id", "project_id"),
        Index("idx_dropbox_connections_project", "project_id"),
    )

    @property
    def is_org_scope(self) -> bool:
        return self.project_id is None
