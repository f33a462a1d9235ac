"""Root logger setup: rich console output plus a rotating run log."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 3

# Workers log interleaved lines; the thread name tells them apart.
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _console_handler(level: int, console: Console | None) -> logging.Handler:
    handler = RichHandler(
        level=level,
        console=console,
        rich_tracebacks=True,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def _file_handler(level: int, log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def setup_logging(log_level: str, log_file: Path, console: Console | None = None) -> None:
    """Send every log record to the console and to log_file.

    Args:
        log_level: Level name such as "INFO" or "debug". Unknown names mean INFO.
        log_file: Rotating log file; missing parent directories are created.
        console: Console shared with the progress bar, so log lines do not
            break its rendering.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    root.addHandler(_console_handler(level, console))
    root.addHandler(_file_handler(level, log_file))
