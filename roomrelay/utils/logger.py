"""Logging utilities."""

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} - {message}"
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def _ensure_name(record) -> bool:
    # Records from the bare loguru logger carry no bound name
    record["extra"].setdefault("name", record["name"])
    return True


def setup_logging(log_level: str = "INFO", log_file: Optional[Union[Path, str]] = None) -> None:
    """Replace all sinks with a console sink and, optionally, a log file.

    The file is rotated at 10 MB, kept for a week and zipped on rotation.
    """
    level = log_level.upper()
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True, filter=_ensure_name)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=LOG_FORMAT,
            level=level,
            rotation="10 MB",
            retention="1 week",
            compression="zip",
            filter=_ensure_name,
        )


def get_logger(name: str):
    """Logger bound to a module name (usually ``__name__``)."""
    return logger.bind(name=name)
