"""Logging configuration for action-cache.

The library itself only creates module loggers; the command line calls
``setup_logging`` to send them to a rotating session log file.
"""

import logging
from pathlib import Path
from typing import Optional

LOGGER_NAME = "action_cache"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"


def _rotate_log_if_needed(log_file: Path, max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5) -> None:
    """Rotate log file on startup if it exceeds max size.

    Args:
        log_file: Path to the log file
        max_bytes: Maximum file size before rotation (default: 10MB)
        backup_count: Number of backup files to keep (default: 5)
    """
    if not log_file.exists():
        return

    if log_file.stat().st_size < max_bytes:
        return

    # Shift backups up by one, dropping the oldest
    oldest = log_file.parent / f"{log_file.name}.{backup_count}"
    if oldest.exists():
        oldest.unlink()
    for i in range(backup_count - 1, 0, -1):
        source = log_file.parent / f"{log_file.name}.{i}"
        if source.exists():
            source.rename(log_file.parent / f"{log_file.name}.{i + 1}")

    log_file.rename(log_file.parent / f"{log_file.name}.1")


def setup_logging(log_dir: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """Set up action-cache logging.

    Args:
        log_dir: Directory for ``action_cache.log``; None logs to stderr
        level: Minimum level to record

    Returns:
        The package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "action_cache.log"
        _rotate_log_if_needed(log_file)
        handler: logging.Handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    if log_dir is not None:
        logger.info("=" * 60)
        logger.info("ACTION-CACHE SESSION STARTED")
        logger.info("=" * 60)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the package logger.

    Args:
        name: Module name (usually __name__)

    Returns:
        Logger instance
    """
    if name == LOGGER_NAME or name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
