"""
Logging configuration — one call at process start, from main.py.

Modules log through ``logging.getLogger(__name__)``; this only decides
where records go and how they look. Console level precedence:

    --debug / --verbose / --quiet  >  PROV_LOG_LEVEL  >  WARNING

PROV_LOG_FILE adds a file handler (level PROV_LOG_FILE_LEVEL, default
the console level). Host workers prefix their lines with ``[host]`` and
the thread name is shown from INFO down, so interleaved hosts can be
told apart.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LOG_LEVEL = "PROV_LOG_LEVEL"
ENV_LOG_FILE = "PROV_LOG_FILE"
ENV_LOG_FILE_LEVEL = "PROV_LOG_FILE_LEVEL"

_DETAILED = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d — %(message)s"

# (max level, format, datefmt), most verbose first
_CONSOLE_FORMATS = (
    (logging.DEBUG, _DETAILED, "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(threadName)s] %(message)s", "%H:%M:%S"),
)
_FILE_FORMAT = (_DETAILED, "%Y-%m-%d %H:%M:%S")


def resolve_level(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Console level name from CLI flags, else PROV_LOG_LEVEL, else WARNING."""
    for flag, name in ((debug, "DEBUG"), (verbose, "INFO"), (quiet, "ERROR")):
        if flag:
            return name
    return os.environ.get(ENV_LOG_LEVEL, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers.

    Args:
        level: Console level name. Unknown names mean WARNING.
        log_file: Also write records to this file.
        log_file_level: Level for ``log_file`` (default: ``level``).
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    handlers: list[logging.Handler] = [console]
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(_parse_level(log_file_level) if log_file_level else console_level)
        file_handler.setFormatter(logging.Formatter(*_FILE_FORMAT))
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    # Root must pass everything the chattiest handler wants
    root.setLevel(min(h.level for h in handlers))
    logging.raiseExceptions = False


def setup_logging_from_env(level: str) -> None:
    """``setup_logging`` with file output taken from PROV_LOG_FILE*."""
    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_LOG_FILE),
        log_file_level=os.environ.get(ENV_LOG_FILE_LEVEL),
    )


def _console_format(level: int) -> tuple[str, str | None]:
    for ceiling, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= ceiling:
            return fmt, datefmt
    return "%(message)s", None


def _parse_level(level: str | None) -> int:
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
