from __future__ import annotations

import logging
import os
from pathlib import Path
import sys

_DEFAULT_LOG_LEVEL = "INFO"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_RESET = "\x1b[0m"
_LEVEL_COLORS = {
    "DEBUG": "\x1b[36m",
    "INFO": "\x1b[32m",
    "WARNING": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "CRITICAL": "\x1b[1;31m",
}
# Third-party loggers that are far too chatty at DEBUG.
_NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3", "httpx", "multipart")


class _ColorFormatter(logging.Formatter):
    def __init__(self, *, use_color: bool) -> None:
        super().__init__(fmt=_FORMAT, datefmt=_DATEFMT)
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        if self._use_color:
            color = _LEVEL_COLORS.get(original, "")
            record.levelname = f"{color}{original}{_RESET}" if color else original
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _should_use_color() -> bool:
    if os.getenv("NO_COLOR"):
        return False
    return sys.stderr.isatty()


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    candidate = (level or os.getenv("DBAAS_LOG_LEVEL", _DEFAULT_LOG_LEVEL)).upper()
    resolved = logging.getLevelName(candidate)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def _resolve_log_file(log_file: Path | None) -> Path | None:
    if log_file is not None:
        return log_file
    env_value = os.getenv("DBAAS_LOG_FILE")
    return Path(env_value) if env_value else None


def configure_logging(
    *,
    level: str | int | None = None,
    log_file: Path | None = None,
    force: bool = False,
) -> None:
    """Install the stderr handler (and optionally a plain file handler) on the root logger.

    Calling it again without ``force`` only adjusts the level of the handlers
    already installed, so the CLI and the API app can both call it safely.
    """
    root = logging.getLogger()
    resolved_level = _resolve_level(level)
    root.setLevel(resolved_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))

    if root.handlers and not force:
        for handler in root.handlers:
            handler.setLevel(resolved_level)
        return

    handlers: list[logging.Handler] = []
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(_ColorFormatter(use_color=_should_use_color()))
    handlers.append(stream_handler)

    resolved_file = _resolve_log_file(log_file)
    if resolved_file is not None:
        resolved_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(resolved_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
        handlers.append(file_handler)

    root.handlers.clear()
    for handler in handlers:
        handler.setLevel(resolved_level)
        root.addHandler(handler)
