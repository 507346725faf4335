"""
Enhanced Logging Utility Module

Colored console logging for the calendar server with file:line tracking,
truncation of long messages (event payloads, batch bodies), an optional
per-day log file, and a timing decorator.

Console output always goes to stderr: over the stdio transport stdout
carries the MCP protocol stream.
"""

import datetime
import logging
import sys
import time
from functools import wraps
from pathlib import Path

from config.settings import settings

# ======== Color Configuration ========
LEVEL_COLORS = {
    "DEBUG": "\033[38;5;39m",  # Blue
    "INFO": "\033[38;5;34m",  # Green
    "WARNING": "\033[38;5;214m",  # Orange
    "ERROR": "\033[38;5;196m",  # Red
    "CRITICAL": "\033[48;5;196;38;5;231m",  # White on Red
}
TIMESTAMP_COLOR = "\033[38;5;246m"
LOCATION_COLOR = "\033[1;38;5;63m"
RESET = "\033[0m"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_MSG_LENGTH = 3000

_configured = False


def _short_path(pathname: str) -> str:
    """Path relative to the project root when the record comes from this project."""
    try:
        return str(Path(pathname).resolve().relative_to(settings.project_root.resolve()))
    except ValueError:
        return pathname


def _truncate(message: str) -> str:
    if len(message) > MAX_MSG_LENGTH:
        return message[: MAX_MSG_LENGTH - 3] + "..."
    return message


class CalendarLogFormatter(logging.Formatter):
    """
    Renders `time path:line [L] message`.

    Colors are applied only when the stream is a terminal, so log files and
    captured stderr stay plain.
    """

    def __init__(self, use_colors: bool = False):
        super().__init__(datefmt=DATE_FORMAT)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        location = f"{_short_path(record.pathname)}:{record.lineno}"
        level = f"[{record.levelname[:1]}]"
        message = _truncate(record.getMessage())

        if self.use_colors:
            color = LEVEL_COLORS.get(record.levelname, LEVEL_COLORS["INFO"])
            timestamp = f"{TIMESTAMP_COLOR}{timestamp}{RESET}"
            location = f"{LOCATION_COLOR}{location}{RESET}"
            level = f"{color}{level}{RESET}"

        line = f"{timestamp} {location} {level} {message}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _file_handler(level: int):
    """Handler writing to <log_dir>/<YYYY-MM-DD>/calendar_<HH-MM-SS>.log, or None."""
    now = datetime.datetime.now()
    day_dir = Path(settings.log_dir) / now.strftime("%Y-%m-%d")
    try:
        day_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(day_dir / f"calendar_{now.strftime('%H-%M-%S')}.log")
    except OSError as e:
        print(f"Warning: Cannot create log file in {day_dir} ({e}). Using console logging only.", file=sys.stderr)
        return None
    handler.setLevel(level)
    handler.setFormatter(CalendarLogFormatter(use_colors=False))
    return handler


def setup_logger(level=None, log_to_file=None):
    """
    Configure the root logger once and return it.

    Args:
        level: Logging level name or number (defaults to settings.log_level)
        log_to_file: Also write a daily log file (defaults to settings.log_to_file)

    Returns:
        logging.Logger: The root logger instance
    """
    global _configured

    root_logger = logging.getLogger()
    if _configured:
        return root_logger

    level = level or settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if log_to_file is None:
        log_to_file = settings.log_to_file

    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(CalendarLogFormatter(use_colors=sys.stderr.isatty()))
    root_logger.addHandler(console_handler)

    if log_to_file:
        file_handler = _file_handler(level)
        if file_handler is not None:
            root_logger.addHandler(file_handler)

    # Discovery cache misses and per-request httpx lines are noise at INFO
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True
    root_logger.debug("Enhanced logger initialized")
    return root_logger


def get_logger(name=None):
    """Named logger; configures the root logger on first use."""
    if not _configured:
        setup_logger()
    return logging.getLogger(name)


def log_execution_time(func):
    """Log how long a synchronous helper takes, at DEBUG; failures at ERROR."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Failed {func.__name__} after {time.perf_counter() - started:.3f}s: {e}")
            raise
        logger.debug(f"Completed {func.__name__} in {time.perf_counter() - started:.3f}s")
        return result

    return wrapper
