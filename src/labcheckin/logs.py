"""Logging setup for the kiosk and the headless commands."""

import logging
import pathlib

from rich import logging as rich_logging
from textual import logging as textual_logging

from labcheckin import config


LOG_FILE_NAME = "labcheckin.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(settings: config.Settings, console: str = "rich") -> pathlib.Path:
    """Configure application-wide logging.

    Log records always go to a file in the data directory. The console
    handler is rich's RichHandler for command line use, or textual's
    TextualHandler while the kiosk owns the terminal.

    Returns:
        Path to the log file.
    """
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    log_path = settings.data_dir / LOG_FILE_NAME
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    handlers: list[logging.Handler] = [file_handler]
    match console:
        case "textual":
            handlers.append(textual_logging.TextualHandler())
        case "rich":
            handlers.append(rich_logging.RichHandler(rich_tracebacks=True))
    logging.basicConfig(
        level=settings.log_level.upper(),
        handlers=handlers,
        force=True,
    )
    # SQLAlchemy logs every statement at INFO when echo is on.
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger(__name__).info("Logging to %s", log_path)
    return log_path
