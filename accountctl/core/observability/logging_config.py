"""
Logging configuration — one call at startup, shared by the CLI and the API.

Modules log through ``logging.getLogger(__name__)``; this module decides
where records go and how they look. Every handler carries a
``RedactingFilter`` so secret-bearing mappings passed as log arguments
are masked before formatting.

Console level precedence:
    --debug / --verbose / --quiet  >  ACCTL_LOG_LEVEL  >  WARNING

File output: ACCTL_LOG_FILE, with its own level in ACCTL_LOG_FILE_LEVEL.
"""

from __future__ import annotations

import logging
import sys

from accountctl.core.security.redaction import redact

# Console formats by verbosity: (format, datefmt)
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    logging.WARNING: ("%(message)s", None),
}

_FILE_FORMAT = ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s",
                "%Y-%m-%d %H:%M:%S")

# Libraries that chatter at INFO (werkzeug logs every API request)
_NOISY_LOGGERS = ("urllib3", "werkzeug")


class RedactingFilter(logging.Filter):
    """Mask secret-bearing keys in mapping arguments of a log call."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = redact(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(
                redact(a) if isinstance(a, (dict, list)) else a for a in record.args
            )
        return True


def _console_format(level: int) -> tuple[str, str | None]:
    if level <= logging.DEBUG:
        return _CONSOLE_FORMATS[logging.DEBUG]
    if level <= logging.INFO:
        return _CONSOLE_FORMATS[logging.INFO]
    return _CONSOLE_FORMATS[logging.WARNING]


def _handler(
    handler: logging.Handler,
    level: int,
    fmt: tuple[str, str | None],
    redacting: RedactingFilter,
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt[0], datefmt=fmt[1]))
    handler.addFilter(redacting)
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for the whole process.

    Replaces any handlers already on the root logger, so calling it
    again (tests, repeated CLI invocations in one process) is safe.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path of a log file to append to.
        log_file_level: Level for the file; defaults to ``level``.
        quiet_third_party: Hold ``_NOISY_LOGGERS`` at WARNING unless the
            console is at DEBUG.
    """
    console_level = _parse_level(level)
    redacting = RedactingFilter()

    handlers = [
        _handler(logging.StreamHandler(sys.stderr), console_level,
                 _console_format(console_level), redacting),
    ]
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_handler(logging.FileHandler(log_file, encoding="utf-8"),
                                 file_level, _FILE_FORMAT, redacting))
        root_level = min(root_level, file_level)

    root = logging.getLogger()
    root.handlers[:] = handlers
    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # A closed stderr (e.g. after a test runner swaps it) must not break callers
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name → numeric level; unknown or empty names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
