"""Consolidated structured logging configuration for the desktop agent."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from config import config

# Log file path
LOG_PATH = config.logging.log_path


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging with correlation IDs and extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with structured extra data."""
        log_data = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "extra": getattr(record, "extra", {}),
        }
        return json.dumps(log_data, default=str)


def setup_logger(
    name: str = "desktop_agent",
    level: Optional[int] = None,
    log_path: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure structured logging with file and console output.

    - File output: JSON-formatted logs (plain text when LOG_JSON_FORMAT=false)
    - Console output: Human-readable format, disabled with LOG_CONSOLE=false

    Args:
        name: Logger name (default: "desktop_agent")
        level: Logging level (default: LOG_LEVEL from the environment)
        log_path: Log file location (default: LOG_PATH)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Prevent duplicate handlers if already configured
    if logger.handlers:
        return logger

    if level is None:
        level = logging.getLevelName(config.logging.log_level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    logger.propagate = False

    path = log_path or LOG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(path, encoding="utf-8")
    if config.logging.json_format:
        file_handler.setFormatter(JSONFormatter())
    else:
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(file_handler)

    if config.logging.console_output:
        console_handler = logging.StreamHandler()
        console_formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    return logger


# Initialize global logger instance
logger = setup_logger()
