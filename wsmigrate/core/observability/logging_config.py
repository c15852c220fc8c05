"""
Logging setup for the wsmigrate process.

``setup_logging`` runs once, from the CLI group callback, before any
command touches the machine.  Modules only ever call
``logging.getLogger(__name__)``.

Console level, highest precedence first:

    --debug, --verbose, --quiet, $WSM_LOG_LEVEL, WARNING

``$WSM_LOG_FILE`` adds a file log; ``$WSM_LOG_FILE_LEVEL`` lets it be
more verbose than the console (useful for a long reconcile run).
"""

from __future__ import annotations

import logging
import sys

# level threshold → (format, date format); first match wins
_CONSOLE_FORMATS: list[tuple[int, str, str | None]] = [
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
]

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(threadName)s %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# capture units run on a thread pool; keep its internals out of -v output
_CHATTY_LOGGERS = ("concurrent.futures", "asyncio")


def resolve_level(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    env_level: str | None = None,
) -> str:
    """Console level name for the given CLI flags and ``$WSM_LOG_LEVEL``."""
    for flag, name in ((debug, "DEBUG"), (verbose, "INFO"), (quiet, "ERROR")):
        if flag:
            return name
    return env_level or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install the console handler, and the file handler when asked.

    Replaces any handlers already on the root logger, so calling it
    again (as the CLI tests do) does not stack handlers.

    Args:
        level: Console level name.  Unknown names mean WARNING.
        log_file: Path of an optional log file.
        log_file_level: Level for the file; defaults to ``level``.
        quiet_third_party: Hold thread-pool and asyncio loggers at
            WARNING unless the console is at DEBUG.
    """
    console_level = _parse_level(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_console_handler(console_level))
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # a closed stderr must never turn a log call into a traceback
    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next((f, d) for threshold, f, d in _CONSOLE_FORMATS if level <= threshold)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _parse_level(level: str | None) -> int:
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
