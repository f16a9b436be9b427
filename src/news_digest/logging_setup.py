"""Console and file logging for CLI runs."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.logging import RichHandler

from .config import Settings

LOG_FILE_NAME = "news-digest.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3


def configure_logging(settings: Settings, *, console_level: int = logging.WARNING) -> Path:
    """
    Route package logs to a rich console handler and a rotating log file.

    The console only shows warnings and errors; the file keeps everything at
    ``settings.log_level``. Calling it twice replaces the handlers it added
    before. Returns the log file path.
    """
    file_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    log_dir = Path(settings.log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    logger = logging.getLogger("news_digest")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(min(file_level, console_level))
    logger.propagate = False

    console = RichHandler(show_path=False, rich_tracebacks=False)
    console.setLevel(console_level)
    logger.addHandler(console)

    file_handler = RotatingFileHandler(
        filename=log_path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    file_handler.setLevel(file_level)
    logger.addHandler(file_handler)
    return log_path
