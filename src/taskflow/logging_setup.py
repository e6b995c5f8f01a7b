# src/taskflow/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Loggers that fire on every snapshot or poll tick.
FEED_LOGGERS = ("taskflow.tasks.sync", "taskflow.store.")

LOG_FILE_NAME = "taskflow.log"


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable while the REPL is in use.

    taskflow.* passes through, except the feed loggers, which need WARNING+.
    Everything else (captured py.warnings, third-party libraries) needs ERROR+.
    """

    def __init__(self, quiet_prefixes: tuple[str, ...] = FEED_LOGGERS) -> None:
        super().__init__()
        self._quiet = quiet_prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("taskflow."):
            return record.levelno >= logging.ERROR
        if record.name.startswith(self._quiet):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskflow",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """
    Install the console and file handlers on the root logger; return the log file path.

    The console gets the filtered view, the file gets everything at file_level.
    Call once, before the core starts. Calling again replaces the handlers.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s", "%H:%M:%S"))
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s.%(msecs)03d %(levelname)s %(threadName)s %(name)s: %(message)s",
            "%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(file_handler)

    logging.captureWarnings(True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return log_file
