"""Process-wide logger with text and JSON output formats."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime

CFG_LOG_FORMAT_TEXT = "text"
CFG_LOG_FORMAT_JSON = "json"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}


class _TextFormatter(logging.Formatter):
    def __init__(self, timestamp: bool) -> None:
        super().__init__()
        self.timestamp = timestamp

    def format(self, record: logging.LogRecord) -> str:
        parts = []
        if self.timestamp:
            parts.append(datetime.fromtimestamp(record.created).strftime("[%Y-%m-%d %H:%M:%S]"))
        parts.append(f"{record.levelname[:4]:>5}")
        prefix = getattr(record, "prefix", None)
        if prefix:
            parts.append(f"{prefix}:")
        parts.append(record.getMessage())
        parts.extend(f"{k}={v}" for k, v in (getattr(record, "fields", None) or {}).items())
        return " ".join(parts)


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = dict(getattr(record, "fields", None) or {})
        prefix = getattr(record, "prefix", None)
        if prefix:
            data["prefix"] = prefix
        data["level"] = record.levelname.lower()
        data["msg"] = record.getMessage()
        data["time"] = datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")
        return json.dumps(data, sort_keys=True, default=str)


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever ``sys.stderr`` is when a record is emitted."""

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value) -> None:
        pass


_logger = logging.getLogger("blocky")
_handler = _StderrHandler()
_logger.addHandler(_handler)


def get_logger() -> logging.Logger:
    """Return the global logger."""
    return _logger


def prefixed_log(prefix: str) -> logging.LoggerAdapter:
    """Return the global logger tagged with ``prefix``."""
    return logging.LoggerAdapter(_logger, {"prefix": prefix})


def configure_logger(log_level: str, log_format: str, log_timestamp: bool) -> None:
    """Apply level and output format; an unknown level raises ValueError."""
    name = (log_level or "info").lower()
    if name not in _LEVELS:
        raise ValueError(f"invalid log level {log_level}")
    _logger.setLevel(_LEVELS[name])

    if log_format == CFG_LOG_FORMAT_TEXT:
        _handler.setFormatter(_TextFormatter(log_timestamp))
    elif log_format == CFG_LOG_FORMAT_JSON:
        _handler.setFormatter(_JsonFormatter())


configure_logger("info", CFG_LOG_FORMAT_TEXT, True)