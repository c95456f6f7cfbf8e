"""Configuration for the action cache.

Settings come from three places, highest precedence first:
- ``ACTION_CACHE_*`` environment variables
- the ``[cache]`` table of a TOML config file
- built-in defaults

Config file location:
- Linux/macOS: ~/.config/action-cache/config.toml (XDG_CONFIG_HOME)
- Windows: %APPDATA%\\action-cache\\config.toml

Storage credentials are never part of the config; they are read from
AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY when the remote tier starts.
"""

import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import tomllib
import tomli_w
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from action_cache.services.uploader import RetryPolicy


def get_config_dir() -> Path:
    """Get the platform-specific config directory.

    Returns:
        Path to the config directory for action-cache.
    """
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "action-cache"
        return Path.home() / "AppData" / "Roaming" / "action-cache"
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "action-cache"
    return Path.home() / ".config" / "action-cache"


def get_config_path() -> Path:
    """Get the path to the config.toml file."""
    return get_config_dir() / "config.toml"


def get_default_local_path() -> Path:
    """Get the default location of the local action cache file."""
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg_cache) if xdg_cache else Path.home() / ".cache"
    return base / "action-cache" / "action_cache.json"


class CacheSettings(BaseSettings):
    """Action cache configuration."""

    model_config = SettingsConfigDict(env_prefix="ACTION_CACHE_", extra="ignore")

    # Remote tier
    remote_enabled: bool = False
    shared_mode: bool = False  # Satisfy local misses from the remote tier
    strict_shared: bool = False  # Raise remote errors from get() instead of missing
    bucket: str = "action-cache"
    endpoint_url: str = ""  # Empty for AWS, set for S3-compatible stores
    region: str = "us-east-1"
    key_prefix: str = "action-cache"

    # Transfers
    max_concurrent_uploads: int = Field(default=8, ge=1)
    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=30.0, gt=0)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_initial_backoff: float = Field(default=0.2, ge=0)
    retry_max_backoff: float = Field(default=5.0, ge=0)
    skip_existing: bool = True
    remote_delete: bool = False  # Best-effort descriptor delete on remove()
    signed_url_expiry_seconds: int = Field(default=3600, ge=1, le=7 * 24 * 3600)

    # Local paths
    local_path: Path = Field(default_factory=get_default_local_path)
    materialize_root: Optional[Path] = None  # Where fetched outputs are written
    log_dir: Optional[Path] = None

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        # Environment overrides values passed in from the config file.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_backoff=self.retry_initial_backoff,
            max_backoff=self.retry_max_backoff,
        )

    @property
    def signed_url_expiry(self) -> timedelta:
        return timedelta(seconds=self.signed_url_expiry_seconds)


def load_settings(path: Optional[Path] = None) -> CacheSettings:
    """Load settings from a TOML file, with environment overrides.

    A missing file is not an error; defaults and environment apply.

    Args:
        path: Path to config file (defaults to standard location)

    Returns:
        CacheSettings instance

    Raises:
        tomllib.TOMLDecodeError: If the file is not valid TOML
        pydantic.ValidationError: If a value is invalid
    """
    if path is None:
        path = get_config_path()

    values: Dict[str, Any] = {}
    if path.exists():
        with open(path, "rb") as f:
            data = tomllib.load(f)
        values = dict(data.get("cache", {}))

    return CacheSettings(**values)


def save_settings(settings: CacheSettings, path: Optional[Path] = None) -> Path:
    """Save settings to a TOML file.

    Args:
        settings: Settings to write
        path: Path to save config (defaults to standard location)

    Returns:
        Path the settings were written to
    """
    if path is None:
        path = get_config_path()

    path.parent.mkdir(parents=True, exist_ok=True)
    data = {"cache": settings.model_dump(mode="json", exclude_none=True)}

    with open(path, "wb") as f:
        tomli_w.dump(data, f)
    return path
