"""Coloured logging configuration for the autoscaler benchmarker.

This module provides a pre-configured logger shared by the orchestrator and
every monitor. Handlers serialise writes, so the two scale-down pollers can
log concurrently; the thread name in each line tells their output apart.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(threadName)s] %(message)s"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


class LogMessageFilter(logging.Filter):
    """A logging filter to remove problematic control characters from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log records, removing only problematic control characters.

        Returns:
            True, so the record is always processed.
        """
        if isinstance(record.msg, str):
            record.msg = _CONTROL_CHARS.sub("", record.msg)
        if record.exc_text:
            record.exc_text = _CONTROL_CHARS.sub("", record.exc_text)
        return True


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colour codes to different log levels."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[90m",  # Grey
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET: ClassVar[str] = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with the colour of its level.

        Returns:
            The formatted log record wrapped in colour codes.
        """
        colour = self.COLORS.get(record.levelname, "")
        formatted = super().format(record)
        if colour:
            formatted = f"{colour}{formatted}{self.RESET}"
        return formatted


def set_level(debug: bool) -> None:
    """Switch the console handler between INFO and DEBUG output."""
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)
    console_handler.setLevel(level)


def add_file_handler(path: Path) -> logging.FileHandler:
    """Mirror all log output to a plain-text file.

    Returns:
        The attached handler, so callers can detach it again.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.addFilter(LogMessageFilter())
    logger.addHandler(file_handler)
    return file_handler


logger = logging.getLogger("autoscaler_bench")
logger.setLevel(logging.INFO)

console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(ColoredFormatter(LOG_FORMAT))
console_handler.addFilter(LogMessageFilter())

logger.addHandler(console_handler)

# Prevent duplicate logs from root logger
logger.propagate = False
