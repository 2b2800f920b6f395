"""
Configuration management for adventure_sync.
Loads environment variables (and a .env file) and validates required settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from adventure_sync.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".adventure_sync"


@dataclass(frozen=True)
class Settings:
    """Resolved configuration values."""

    supabase_url: str
    supabase_anon_key: str
    data_dir: Path = DEFAULT_DATA_DIR
    bucket: str = "photos"
    probe_interval: float = 30.0
    email: str | None = None
    password: str | None = None

    @property
    def blob_db_path(self) -> Path:
        return self.data_dir / "offline_uploads.db"

    @property
    def token_cache_path(self) -> Path:
        return self.data_dir / "token_cache.json"

    @property
    def probe_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/auth/v1/health"


def get_config() -> Settings:
    """
    Load and validate configuration from environment variables.
    Raises ConfigError if required variables are missing or malformed.
    """
    load_dotenv()

    missing = [key for key in ("SUPABASE_URL", "SUPABASE_ANON_KEY") if not os.getenv(key)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    interval = os.getenv("ADVENTURE_SYNC_PROBE_INTERVAL", "30")
    try:
        probe_interval = float(interval)
    except ValueError as e:
        raise ConfigError(f"ADVENTURE_SYNC_PROBE_INTERVAL must be a number, got {interval!r}") from e
    if probe_interval <= 0:
        raise ConfigError("ADVENTURE_SYNC_PROBE_INTERVAL must be positive")

    data_dir = os.getenv("ADVENTURE_SYNC_DATA_DIR")

    return Settings(
        supabase_url=os.environ["SUPABASE_URL"],
        supabase_anon_key=os.environ["SUPABASE_ANON_KEY"],
        data_dir=Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
        bucket=os.getenv("ADVENTURE_SYNC_BUCKET", "photos"),
        probe_interval=probe_interval,
        email=os.getenv("ADVENTURE_SYNC_EMAIL") or None,
        password=os.getenv("ADVENTURE_SYNC_PASSWORD") or None,
    )


def validate_config() -> bool:
    """
    Validate that all required configuration is present.
    Call this at startup to fail fast if config is incomplete.
    """
    try:
        get_config()
        return True
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return False
