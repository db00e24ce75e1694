"""Logging setup for CodeJournal.

Every module logs through ``logging.getLogger(__name__)``, so all records
land under the ``codejournal`` parent logger. ``setup_logger`` attaches the
handlers once, normally from the command-line entry point.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "codejournal"
LOG_FILENAME = "codejournal.log"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_log_level() -> int:
    """Log level from CODEJOURNAL_LOG_LEVEL, INFO when unset or unknown."""
    return _LEVELS.get(os.getenv("CODEJOURNAL_LOG_LEVEL", "INFO").upper(), logging.INFO)


def get_log_directory() -> Path:
    """Directory for the log file.

    CODEJOURNAL_LOG_DIR overrides the default ``~/.codejournal/logs``; if
    that cannot be created the system temp dir is used instead.
    """
    custom = os.getenv("CODEJOURNAL_LOG_DIR")
    candidate = Path(custom).expanduser() if custom else Path.home() / ".codejournal" / "logs"
    try:
        candidate.mkdir(parents=True, exist_ok=True)
        return candidate
    except OSError:
        fallback = Path(tempfile.gettempdir()) / "codejournal-logs"
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    log_file: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 2,
    console_output: bool = False,
) -> logging.Logger:
    """Attach handlers to a logger, once.

    Args:
        name: Logger name, usually the ``codejournal`` parent
        log_file: File name inside the log directory; None disables file output
        max_bytes: Rotation threshold for the log file
        backup_count: Number of rotated files to keep
        console_output: Also write to stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(get_log_level())

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    if log_file:
        try:
            handler = RotatingFileHandler(
                get_log_directory() / log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        except OSError as e:
            # Logging must never stop the journal from working
            print(f"Warning: Failed to set up file logging: {e}", file=sys.stderr)

    if console_output:
        console = logging.StreamHandler()
        console.setLevel(get_log_level())
        console.setFormatter(formatter)
        logger.addHandler(console)

    if logger.handlers:
        logger.propagate = False

    return logger
