"""Tests for logging setup."""

import logging

import pytest

from action_cache.logging_config import LOGGER_NAME, _rotate_log_if_needed, get_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()


class TestSetupLogging:
    def test_writes_session_log(self, tmp_path):
        logger = setup_logging(tmp_path / "logs")
        get_logger("cache").info("hello from the cache")
        for handler in logger.handlers:
            handler.flush()

        text = (tmp_path / "logs" / "action_cache.log").read_text()
        assert "ACTION-CACHE SESSION STARTED" in text
        assert "action_cache.cache" in text
        assert "hello from the cache" in text

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        setup_logging(tmp_path)
        logger = setup_logging(tmp_path)
        assert len(logger.handlers) == 1

    def test_stderr_without_log_dir(self):
        logger = setup_logging(level=logging.DEBUG)
        assert isinstance(logger.handlers[0], logging.StreamHandler)
        assert logger.level == logging.DEBUG


class TestRotation:
    def test_small_file_is_kept(self, tmp_path):
        log_file = tmp_path / "action_cache.log"
        log_file.write_text("small")
        _rotate_log_if_needed(log_file, max_bytes=100)
        assert log_file.read_text() == "small"

    def test_large_file_is_rotated(self, tmp_path):
        log_file = tmp_path / "action_cache.log"
        log_file.write_text("x" * 200)
        (tmp_path / "action_cache.log.1").write_text("older")

        _rotate_log_if_needed(log_file, max_bytes=100, backup_count=3)

        assert not log_file.exists()
        assert (tmp_path / "action_cache.log.1").read_text() == "x" * 200
        assert (tmp_path / "action_cache.log.2").read_text() == "older"


class TestGetLogger:
    def test_prefixes_package_name(self):
        assert get_logger("storage").name == "action_cache.storage"

    def test_module_names_unchanged(self):
        assert get_logger("action_cache.cache").name == "action_cache.cache"
