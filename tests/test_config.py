"""Tests for action-cache configuration management."""

from datetime import timedelta
from pathlib import Path

import pytest
import tomllib
from pydantic import ValidationError

from action_cache.config import (
    CacheSettings,
    get_config_dir,
    get_config_path,
    get_default_local_path,
    load_settings,
    save_settings,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ACTION_CACHE_BUCKET", "ACTION_CACHE_REMOTE_ENABLED", "ACTION_CACHE_SHARED_MODE"):
        monkeypatch.delenv(name, raising=False)


class TestCacheSettings:
    """Tests for CacheSettings."""

    def test_default_values(self):
        settings = CacheSettings()

        assert settings.remote_enabled is False
        assert settings.shared_mode is False
        assert settings.bucket == "action-cache"
        assert settings.endpoint_url == ""
        assert settings.max_concurrent_uploads == 8
        assert settings.materialize_root is None

    def test_retry_policy(self):
        policy = CacheSettings(retry_max_attempts=5, retry_initial_backoff=1.0).retry_policy
        assert policy.max_attempts == 5
        assert policy.initial_backoff == 1.0

    def test_signed_url_expiry(self):
        assert CacheSettings(signed_url_expiry_seconds=90).signed_url_expiry == timedelta(seconds=90)

    def test_rejects_expiry_over_a_week(self):
        with pytest.raises(ValidationError):
            CacheSettings(signed_url_expiry_seconds=8 * 24 * 3600)

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValidationError):
            CacheSettings(max_concurrent_uploads=0)

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ACTION_CACHE_BUCKET", "env-bucket")
        monkeypatch.setenv("ACTION_CACHE_REMOTE_ENABLED", "true")

        settings = CacheSettings(bucket="file-bucket")

        assert settings.bucket == "env-bucket"
        assert settings.remote_enabled is True


class TestLoadSettings:
    """Tests for load_settings and save_settings."""

    def test_load_from_file(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text(
            """
[cache]
remote_enabled = true
shared_mode = true
bucket = "builds"
endpoint_url = "https://s3.example.com"
key_prefix = "ci"
materialize_root = "/work/out"
"""
        )

        settings = load_settings(config_file)

        assert settings.remote_enabled is True
        assert settings.shared_mode is True
        assert settings.bucket == "builds"
        assert settings.endpoint_url == "https://s3.example.com"
        assert settings.key_prefix == "ci"
        assert settings.materialize_root == Path("/work/out")

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "nonexistent.toml")
        assert settings.bucket == "action-cache"

    def test_file_values_lose_to_env(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.toml"
        config_file.write_text('[cache]\nbucket = "file-bucket"\n')
        monkeypatch.setenv("ACTION_CACHE_BUCKET", "env-bucket")

        assert load_settings(config_file).bucket == "env-bucket"

    def test_invalid_toml_raises(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text("[cache\n")
        with pytest.raises(tomllib.TOMLDecodeError):
            load_settings(config_file)

    def test_save_writes_cache_table(self, tmp_path):
        path = tmp_path / "nested" / "config.toml"
        settings = CacheSettings(bucket="saved-bucket", shared_mode=True)

        assert save_settings(settings, path) == path

        with open(path, "rb") as f:
            data = tomllib.load(f)
        assert data["cache"]["bucket"] == "saved-bucket"
        assert data["cache"]["shared_mode"] is True
        assert "materialize_root" not in data["cache"]
        assert load_settings(path).bucket == "saved-bucket"


class TestPaths:
    """Tests for platform path helpers."""

    def test_config_dir_honours_xdg(self, monkeypatch, tmp_path):
        monkeypatch.setattr("action_cache.config.sys.platform", "linux")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert get_config_dir() == tmp_path / "action-cache"
        assert get_config_path() == tmp_path / "action-cache" / "config.toml"

    def test_config_dir_default(self, monkeypatch):
        monkeypatch.setattr("action_cache.config.sys.platform", "linux")
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        assert get_config_dir() == Path.home() / ".config" / "action-cache"

    def test_config_dir_windows(self, monkeypatch, tmp_path):
        monkeypatch.setattr("action_cache.config.sys.platform", "win32")
        monkeypatch.setenv("APPDATA", str(tmp_path))
        assert get_config_dir() == tmp_path / "action-cache"

    def test_default_local_path(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
        assert get_default_local_path() == tmp_path / "action-cache" / "action_cache.json"
