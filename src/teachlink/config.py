# Configuration — pydantic-settings model backed by ~/.teachlink/config.json.
# Created: 2026-03-02

from __future__ import annotations

import json
import logging
import os
import stat
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_DEFAULT_DIR = Path.home() / ".teachlink"


class Settings(BaseSettings):
    """Client settings.

    Values come from (highest first): explicit kwargs / config.json,
    ``TEACHLINK_*`` environment variables, then the defaults below.
    """

    model_config = SettingsConfigDict(env_prefix="TEACHLINK_", extra="ignore")

    api_base_url: str = Field(default="http://localhost:3000", description="Backend root URL")
    request_timeout: float = Field(default=10.0, description="Transport timeout in seconds")
    refresh_timeout: float | None = Field(
        default=None, description="Upper bound for the in-flight token refresh (unset = none)"
    )
    session_expiry_margin: int = Field(
        default=30, description="Seconds before expiresAt a cached session counts as expired"
    )
    platform: Literal["ios", "android"] = "ios"
    storage_key: str | None = Field(default=None, description="Fernet key for secure storage")
    data_dir: Path | None = None
    log_level: str = "INFO"

    @property
    def config_dir(self) -> Path:
        return self.data_dir or _DEFAULT_DIR

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """Load settings from config.json, falling back to env and defaults."""
        path = path or _DEFAULT_DIR / "config.json"
        data: dict = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable config %s: %s", path, e)
        return cls(**data)

    def save(self, path: Path | None = None) -> None:
        """Persist settings to config.json (owner-only)."""
        path = path or self.config_dir / "config.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2, exclude_none=True))
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)


def get_config_dir(settings: Settings | None = None) -> Path:
    """Get/create the data directory."""
    d = (settings or get_settings()).config_dir
    d.mkdir(parents=True, exist_ok=True)
    return d


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings instance."""
    return Settings.load()
