"""Process-wide structured logger that writes JSON or console lines.

Structured fields are attached to a record through the ``fields`` attribute,
either as keyword arguments to the helpers here or via
``extra={"fields": {...}}`` when calling the logger directly.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, TextIO

LOGGER_NAME = "chmigrate"

DEBUG = logging.DEBUG
INFO = logging.INFO
WARN = logging.WARNING
ERROR = logging.ERROR
PANIC = logging.CRITICAL
FATAL = logging.CRITICAL + 10

_LEVEL_NAMES = {
    DEBUG: "debug",
    INFO: "info",
    WARN: "warn",
    ERROR: "error",
    PANIC: "panic",
    FATAL: "fatal",
}

_initialized = False


class Encoding(Enum):
    """Output format of log lines."""

    JSON = "json"
    CONSOLE = "console"


@dataclass
class LogOptions:
    """Settings for the process-wide logger.

    When ``file`` is set, all output goes there; otherwise errors and above go
    to stderr and everything else to stdout.
    """

    debug: bool = False
    encoding: Encoding = Encoding.JSON
    file: TextIO | None = None


class LogPanic(RuntimeError):
    """Raised after a message has been logged at panic level."""


def _level_name(levelno: int, upper: bool) -> str:
    name = _LEVEL_NAMES.get(levelno) or logging.getLevelName(levelno).lower()
    return name.upper() if upper else name


def _timestamp(record: logging.LogRecord) -> str:
    moment = datetime.fromtimestamp(record.created).astimezone()
    millis = f"{moment.microsecond // 1000:03d}"
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + millis + moment.strftime("%z")


def _fields(record: logging.LogRecord) -> dict[str, Any]:
    value = getattr(record, "fields", None)
    return dict(value) if isinstance(value, dict) else {}


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "level": _level_name(record.levelno, upper=False),
            "ts": _timestamp(record),
            "msg": record.getMessage(),
        }
        entry.update(_fields(record))
        return json.dumps(entry, default=str)


class _ConsoleFormatter(logging.Formatter):
    def __init__(self, development: bool) -> None:
        super().__init__()
        self._development = development

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            _timestamp(record),
            _level_name(record.levelno, upper=self._development),
            record.getMessage(),
        ]
        fields = _fields(record)
        if fields:
            parts.append(json.dumps(fields, default=str))
        return "\t".join(parts)


class _StdStreamHandler(logging.StreamHandler):
    """Writes to the current ``sys.stdout`` or ``sys.stderr`` at emit time."""

    def __init__(self, use_stderr: bool) -> None:
        self._use_stderr = use_stderr
        super().__init__()

    @property
    def stream(self) -> TextIO:
        return sys.stderr if self._use_stderr else sys.stdout

    @stream.setter
    def stream(self, value: TextIO) -> None:
        # The stream is always resolved from sys at emit time.
        pass


def _build_formatter(encoding: Encoding, level: int) -> logging.Formatter:
    if encoding is Encoding.CONSOLE:
        return _ConsoleFormatter(development=level <= DEBUG)
    return _JSONFormatter()


def initialize(options: LogOptions | None = None) -> logging.Logger:
    """Configure the process-wide logger and return it."""
    global _initialized
    options = options or LogOptions()
    level = DEBUG if options.debug else INFO
    formatter = _build_formatter(options.encoding, level)

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False

    if options.file is not None:
        handler = logging.StreamHandler(options.file)
        handler.setLevel(level)
        handlers: list[logging.Handler] = [handler]
    else:
        high = _StdStreamHandler(use_stderr=True)
        high.setLevel(ERROR)
        low = _StdStreamHandler(use_stderr=False)
        low.setLevel(level)
        low.addFilter(lambda record: record.levelno < ERROR)
        handlers = [high, low]

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    _initialized = True
    return logger


def get_logger() -> logging.Logger:
    """Return the process-wide logger, configuring defaults on first use."""
    if not _initialized:
        return initialize()
    return logging.getLogger(LOGGER_NAME)


def log(level: int, message: str, **kwargs: Any) -> None:
    """Log a message with structured fields.

    Panic level raises ``LogPanic`` and fatal level exits the process after
    the message is written.
    """
    get_logger().log(level, message, extra={"fields": kwargs})
    if level >= FATAL:
        raise SystemExit(1)
    if level >= PANIC:
        raise LogPanic(message)


def debug(message: str, **kwargs: Any) -> None:
    log(DEBUG, message, **kwargs)


def info(message: str, **kwargs: Any) -> None:
    log(INFO, message, **kwargs)


def warn(message: str, **kwargs: Any) -> None:
    log(WARN, message, **kwargs)


def error(message: str, **kwargs: Any) -> None:
    log(ERROR, message, **kwargs)


def panic(message: str, **kwargs: Any) -> None:
    log(PANIC, message, **kwargs)


def fatal(message: str, **kwargs: Any) -> None:
    log(FATAL, message, **kwargs)