"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Dropsync application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    secret_key: str = "change-me-in-production"
    # Keys that encrypted older token rows; tried after secret_key when decoding.
    legacy_secret_keys: list[str] = Field(default_factory=list)
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/dropsync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Dropbox app
    dropbox_app_key: str = ""
    dropbox_app_secret: str = ""
    dropbox_redirect_uri: str = "http://localhost:8000/api/dropbox/callback"
    dropbox_root_path: str = "/Clientes"
    dropbox_timeout_seconds: float = Field(default=30.0, gt=0)
    dropbox_page_size: int = Field(default=2000, ge=1, le=2000)

    # Token lifecycle
    token_refresh_skew_seconds: int = Field(default=60, ge=0)
    oauth_state_ttl_seconds: int = Field(default=600, ge=1)

    # Sync runs
    sync_max_files_per_run: int = Field(default=5000, ge=1)
    sync_lease_seconds: int = Field(default=900, ge=1)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            violations.append(
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars)"
            )
        if not self.dropbox_app_key or not self.dropbox_app_secret:
            violations.append("DROPBOX_APP_KEY and DROPBOX_APP_SECRET must be configured")
        if not self.dropbox_redirect_uri.startswith("https://"):
            violations.append("DROPBOX_REDIRECT_URI must use https in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
