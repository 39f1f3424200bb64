"""
Logging configuration — one-time setup for the CLI and the web server.

Every module does ``logger = logging.getLogger(__name__)``; this sets
up the root logger they all propagate to.

Level precedence:
    --debug / --verbose / --quiet  >  TTSHUB_LOG_LEVEL  >  WARNING

An optional log file is enabled with ``TTSHUB_LOG_FILE``; its level
defaults to the console level and can be overridden with
``TTSHUB_LOG_FILE_LEVEL``.

Worker and step output is NOT logged here.  It travels on the log bus
(core/services/log_bus.py) and is rendered by ``ttshub service start``
or streamed over SSE.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LEVEL = "TTSHUB_LOG_LEVEL"
ENV_FILE = "TTSHUB_LOG_FILE"
ENV_FILE_LEVEL = "TTSHUB_LOG_FILE_LEVEL"

# Console format per verbosity, most detailed first.
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(levelname)s: %(message)s", None),
)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d — %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Flask's dev server logs every request (SSE keeps one open forever).
_NOISY_LOGGERS = ("werkzeug", "urllib3")


def _parse_level(level: str | None) -> int:
    """Level name to its numeric constant; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.strip().upper())
    return numeric if isinstance(numeric, int) else logging.WARNING


def _console_formatter(level: int) -> logging.Formatter:
    for threshold, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter("%(message)s")


def resolve_level(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Console level name from CLI flags, falling back to the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(ENV_LEVEL, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name.
        log_file: Optional path of a log file (appended to).
        log_file_level: Level for the file; defaults to ``level``.
        quiet_third_party: Keep request/HTTP-client loggers at WARNING
            unless the console is at DEBUG.
    """
    console_level = _parse_level(level)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))
    root.addHandler(console)

    root_level = console_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(fh)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def setup_from_env(level: str, *, debug: bool = False) -> None:
    """``setup_logging`` with the file settings read from the environment."""
    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_FILE),
        log_file_level=os.environ.get(ENV_FILE_LEVEL),
        quiet_third_party=not debug,
    )
