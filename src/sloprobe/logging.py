"""Logging setup for the probe: diagnostics plus the timestamped status line."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path
from typing import TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
ROOT_LOGGER = "sloprobe"
STATUS_LOGGER = "sloprobe.status"
DEFAULT_LOG_PATH = Path("~/.local/state/sloprobe/sloprobe.log")
_FALLBACK_LOG_PATH = Path(".sloprobe/logs/sloprobe.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"
_STATUS_FORMAT = "[%(asctime)s] %(message)s"
_STATUS_DATEFMT = "%Y-%m-%d %H:%M:%S"


class ProbeFormatter(py_logging.Formatter):
    """Renders status records as ``[yyyy-mm-dd HH:MM:SS] DB: ... - SLO: ...``.

    Every other record keeps the detailed diagnostic layout with the logger
    name and line number.
    """

    def __init__(self) -> None:
        super().__init__(_FORMAT)
        self._status = py_logging.Formatter(_STATUS_FORMAT, _STATUS_DATEFMT)

    def format(self, record: py_logging.LogRecord) -> str:
        if record.name == STATUS_LOGGER:
            return self._status.format(record)
        return super().format(record)


class _ConsoleFilter(py_logging.Filter):
    def __init__(self, level: int) -> None:
        super().__init__()
        self.level = level

    def filter(self, record: py_logging.LogRecord) -> bool:
        if record.name == STATUS_LOGGER and self.level < py_logging.ERROR:
            return True
        return record.levelno >= self.level


def status_logger() -> py_logging.Logger:
    return py_logging.getLogger(STATUS_LOGGER)


def parse_level(level: str) -> int:
    normalized = level.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    return LOG_LEVELS.get(normalized, py_logging.INFO)


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        resolved = (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    else:
        if not resolved.is_absolute():
            resolved = resolved.resolve()
    return resolved


def _file_handler(log_file: str | Path) -> py_logging.Handler | None:
    try:
        log_path = Path(log_file).expanduser()
    except RuntimeError:
        log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = log_path.resolve()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return py_logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        return None


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """Route the ``sloprobe`` logger tree to ``stream`` and optionally a file.

    Status lines always reach the stream unless the level is ERROR, so a
    ``--log-level WARN`` run still shows what the database is serving.
    """
    resolved = parse_level(level)

    logger = py_logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    formatter = ProbeFormatter()

    handler = py_logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(min(resolved, py_logging.INFO))
    handler.addFilter(_ConsoleFilter(resolved))
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    status_logger().setLevel(py_logging.INFO)

    if log_file:
        file_handler = _file_handler(log_file)
        if file_handler is not None:
            # The file keeps DEBUG detail; only the stream honours --log-level.
            logger.setLevel(py_logging.DEBUG)
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger
