"""Logging setup for pipeline runs.

* ``setup_logging`` – configure the root logger once per process: console
  output plus two midnight-rotated files under ``log_dir`` (``akstory.log``
  at INFO, ``akstory-debug.log`` down to TRACE).
* ``log_call`` – decorator tracing entry, exit and duration of a stage.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed by the CLI.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from functools import wraps
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import ParamSpec, TypeVar

TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(module)s | %(funcName)s | %(message)s"
DEFAULT_LOG_DIR = Path("logs")
LOG_FILES: dict[str, int] = {"akstory.log": logging.INFO, "akstory-debug.log": TRACE_LEVEL}


def _level_from_env() -> int:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    if level_name == "TRACE":
        return TRACE_LEVEL
    return getattr(logging, level_name, logging.INFO)


def _rotating_handler(path: Path, level: int, fmt: logging.Formatter) -> logging.Handler:
    handler = TimedRotatingFileHandler(path, when="midnight", backupCount=7, encoding="utf-8")
    handler.setFormatter(fmt)
    handler.setLevel(level)
    return handler


def setup_logging(log_dir: Path | None = None, force: bool = False) -> None:
    """Install console and file handlers on the root logger.

    Idempotent unless ``force`` is set, in which case existing root handlers
    are closed and replaced. ``LOG_LEVEL`` (``TRACE`` accepted) sets the
    console level and how much reaches the debug file; the info file always
    receives INFO and above.
    """

    if getattr(setup_logging, "_configured", False) and not force:
        return
    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    if force:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()

    level = _level_from_env()
    root.setLevel(min(level, logging.INFO))
    fmt = logging.Formatter(DEFAULT_FORMAT)
    for filename, file_level in LOG_FILES.items():
        root.addHandler(_rotating_handler(log_dir / filename, file_level, fmt))
    console = logging.StreamHandler()
    console.setFormatter(fmt)
    console.setLevel(level)
    root.addHandler(console)
    setup_logging._configured = True  # type: ignore[attr-defined]


P = ParamSpec("P")
R = TypeVar("R")


def log_call(level: int = logging.DEBUG) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Log ENTER/EXIT (with elapsed seconds) around a pipeline stage.

    Exceptions are logged with traceback and re-raised unchanged.
    """

    def _decorator(fn: Callable[P, R]) -> Callable[P, R]:
        logger = logging.getLogger(fn.__module__)

        @wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if logger.isEnabledFor(level):
                logger.log(level, "ENTER %s args=%s kwargs=%s", fn.__qualname__, _shorten(args), _shorten(kwargs))
            started = time.perf_counter()
            try:
                result = fn(*args, **kwargs)
            except Exception as e:  # noqa: BLE001
                logger.exception("ERROR in %s after %.2fs: %s", fn.__qualname__, time.perf_counter() - started, e)
                raise
            if logger.isEnabledFor(level):
                logger.log(
                    level,
                    "EXIT %s in %.2fs -> %s",
                    fn.__qualname__,
                    time.perf_counter() - started,
                    _shorten(result),
                )
            return result

        return wrapper

    return _decorator


def _shorten(obj: object, limit: int = 120) -> str:
    """Return a truncated repr for logging (never raises)."""
    try:
        s = repr(obj)
    except Exception:  # noqa: BLE001
        return type(obj).__name__
    return s if len(s) <= limit else s[: limit - 3] + "..."
