"""Logging setup for the engine and its scheduler entry point.

Records go to stdout and to the configured log file. Level and file come
from EngineSettings (LOG_LEVEL / LOG_FILE, environment or .env) unless the
caller passes them explicitly.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from expense_engine.config import get_settings

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level(name: Optional[str] = None) -> int:
    """Resolve a level name to a logging constant.

    Args:
        name: Level name, case-insensitive (default: settings.log_level)

    Returns:
        Logging level constant; unknown names fall back to INFO
    """
    if name is None:
        name = get_settings().log_level
    return LOG_LEVEL_MAP.get(name.strip().upper(), logging.INFO)


def setup_logging(log_file: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger with a stdout and a file handler.

    Args:
        log_file: Path to log file (default: settings.log_file)
        level: Level name (default: settings.log_level)

    Returns:
        The "expense_engine" logger
    """
    settings = get_settings()
    log_path = Path(log_file or settings.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_level = get_log_level(level if level is not None else settings.log_level)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # Replace, not stack, on repeated calls
    root_logger.handlers.clear()

    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_path)):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    return logging.getLogger("expense_engine")


__all__ = ["setup_logging", "get_log_level", "LOG_LEVEL_MAP"]
