"""Application logging helpers."""

from __future__ import annotations

import logging as py_logging
import sys
from collections.abc import MutableMapping
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
ROOT_LOGGER = "termhub"
DEFAULT_LOG_PATH = Path("~/.config/termhub/logs/termhub.log")
_FALLBACK_LOG_PATH = Path(".termhub/logs/termhub.log")
# A host process lives as long as its UI, so the file log rotates instead of growing forever.
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3
_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s:%(lineno)d %(message)s"


class SessionLogAdapter(py_logging.LoggerAdapter):
    """Prefixes every record with the session it belongs to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return f"[session={extra.get('session_id', '?')}] {msg}", kwargs


def session_logger(logger: py_logging.Logger, session_id: str) -> SessionLogAdapter:
    return SessionLogAdapter(logger, {"session_id": session_id})


def log_session_step(logger: py_logging.Logger, session_id: str, step: str, message: str) -> None:
    """Lifecycle breadcrumb in the greppable ``session-event`` form."""
    logger.info("session-event session=%s step=%s message=%s", session_id, step, message)


def resolve_level(level: str) -> int:
    normalized = level.strip().upper()
    return LOG_LEVELS.get(normalized, py_logging.INFO)


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        return (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    return resolved if resolved.is_absolute() else resolved.resolve()


def _file_handler(log_file: str | Path) -> py_logging.Handler | None:
    try:
        log_path = Path(log_file).expanduser()
    except RuntimeError:
        log_path = Path(log_file)
    try:
        log_path = log_path.resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            log_path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    except OSError:
        return None


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    resolved = resolve_level(level)
    logger = py_logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    formatter = py_logging.Formatter(_FORMAT)

    # stdout carries the wire protocol, so the console handler defaults to stderr.
    console = py_logging.StreamHandler(stream or sys.stderr)
    console.setLevel(resolved)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        file_handler = _file_handler(log_file)
        if file_handler is not None:
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger
