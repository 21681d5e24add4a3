"""Configuration management for calendarsync."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from . import __version__

logger = logging.getLogger(__name__)


class SyncSettings(BaseModel):
    """Runtime settings shared by the fetcher, the store and the CLI."""

    database_path: Path = Field(default=Path("calendarsync.db"), description="SQLite database file")
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP read timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Retry attempts for feed fetches")
    retry_backoff_factor: float = Field(default=1.5, gt=0, description="Backoff base in seconds")
    user_agent: str = Field(default=f"calendarsync/{__version__}", min_length=1)
    default_window_days: int = Field(default=7, ge=1, description="Expansion window for the CLI")
    log_level: str = Field(default="INFO")


# Environment variable -> (settings field, converter)
_ENV_FIELDS: dict[str, tuple[str, Any]] = {
    "CALSYNC_DATABASE_PATH": ("database_path", Path),
    "CALSYNC_REQUEST_TIMEOUT": ("request_timeout", float),
    "CALSYNC_MAX_RETRIES": ("max_retries", int),
    "CALSYNC_RETRY_BACKOFF_FACTOR": ("retry_backoff_factor", float),
    "CALSYNC_USER_AGENT": ("user_agent", str),
    "CALSYNC_DEFAULT_WINDOW_DAYS": ("default_window_days", int),
    "CALSYNC_LOG_LEVEL": ("log_level", lambda value: value.strip().upper()),
}


class ConfigManager:
    """Manages configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []

        try:
            content = self.env_file_path.read_text(encoding="utf-8")
        except OSError:
            logger.debug(
                "Failed to read .env file for defaults (continuing): %s",
                str(self.env_file_path),
                exc_info=True,
            )
            return []

        for raw_line in content.splitlines():
            line = raw_line.strip()

            # Skip empty lines and comments
            if not line or line.startswith("#"):
                continue

            if "=" not in line:
                continue

            key, val = line.split("=", 1)
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            val = val.strip().strip('"').strip("'")

            if key and key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build a settings dictionary from CALSYNC_* environment variables.

        Values that fail to convert are logged and left out, so the
        defaults of SyncSettings apply.
        """
        cfg: dict[str, Any] = {}

        for env_name, (field_name, convert) in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw is None or not raw.strip():
                continue
            try:
                cfg[field_name] = convert(raw.strip())
            except ValueError:
                logger.warning("Invalid %s=%r; ignoring", env_name, raw)

        return cfg

    def load_settings(self) -> SyncSettings:
        """Load .env defaults, then build validated settings from the environment."""
        self.load_env_file()
        cfg = self.build_config_from_env()

        settings = SyncSettings()
        for field_name, value in cfg.items():
            try:
                settings = SyncSettings.model_validate({**settings.model_dump(), field_name: value})
            except ValueError as e:
                logger.warning("Invalid value for %s=%r; using default: %s", field_name, value, e)

        return settings
