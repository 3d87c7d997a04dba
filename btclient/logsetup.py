"""Debug logging to a file for the package's loggers."""

from __future__ import annotations

import contextlib
import logging
import os
import sys
import threading
import time
from pathlib import Path

__all__ = ["init_logging", "DEFAULT_LOG_PATH"]

DEFAULT_LOG_PATH = Path("logs") / "debug.log"

_LOGGER_NAME = "btclient"
_lock = threading.Lock()
_handler: logging.FileHandler | None = None


class _Formatter(logging.Formatter):
    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        level = "WARN" if record.levelname == "WARNING" else record.levelname
        stamp = self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ")
        return f"[{stamp} {level:<5}] {record.getMessage()}"


def init_logging(log_path: str | os.PathLike = DEFAULT_LOG_PATH) -> logging.FileHandler | None:
    """Send debug-level logs of the package to a fresh file at ``log_path``.

    Calling again with the same path does nothing and returns the existing
    handler. Returns None, after reporting on stderr, if the file cannot be
    created.
    """
    global _handler
    path = Path(log_path)
    with _lock:
        if _handler is not None and _handler.baseFilename == os.path.abspath(path):
            return _handler

        logger = logging.getLogger(_LOGGER_NAME)
        if _handler is not None:
            logger.removeHandler(_handler)
            _handler.close()
            _handler = None

        with contextlib.suppress(OSError):
            path.unlink(missing_ok=True)
        with contextlib.suppress(OSError):
            path.parent.mkdir(parents=True, exist_ok=True)

        try:
            handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        except OSError as exc:
            print(f"Failed to initialize logging: {exc}", file=sys.stderr)
            return None

        handler.setFormatter(_Formatter())
        handler.setLevel(logging.DEBUG)
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        _handler = handler
        return handler