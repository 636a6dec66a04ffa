"""Process-wide logging set up from the server configuration."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from datetime import datetime
from typing import Any, TextIO

from supercache.config import Config

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}
_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}
_MARK = "_supercache_handler"


def parse_level(name: str) -> int:
    """Map a level name to a logging level; unknown names mean INFO."""
    return _LEVELS.get(name, logging.INFO)


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "time": datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds"),
        "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
        "msg": record.getMessage(),
    }
    for key, value in vars(record).items():
        if key not in _STANDARD_ATTRS and not key.startswith("_"):
            fields[key] = value
    if record.exc_info:
        fields["exc"] = logging.Formatter().formatException(record.exc_info)
    return fields


def _logfmt_value(value: Any) -> str:
    text = value if isinstance(value, str) else str(value)
    if text == "" or any(c in text for c in ' ="\\') or not text.isprintable():
        return json.dumps(text)
    return text


class _TextFormatter(logging.Formatter):
    """key=value lines in the logfmt style."""

    def format(self, record: logging.LogRecord) -> str:
        return " ".join(f"{k}={_logfmt_value(v)}" for k, v in _record_fields(record).items())


class _JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(_record_fields(record), default=str)


def _stream_for(cfg: Config) -> tuple[TextIO, Callable[[], None]]:
    lo = cfg.log_output.strip().lower()
    if lo in ("", "stdout"):
        return sys.stdout, lambda: None
    if lo == "stderr":
        return sys.stderr, lambda: None
    fh = cfg.open_log_file()
    return fh, fh.close


def init_logging(cfg: Config) -> Callable[[], None]:
    """Install the root log handler described by cfg and return a cleanup callable.

    The cleanup removes the handler and closes any log file opened; init_logging may be
    called again afterwards. Raises ConfigError when the log file cannot be opened.
    """
    stream, close = _stream_for(cfg)
    fmt = cfg.log_format.strip().lower()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(_JsonFormatter() if fmt == "json" else _TextFormatter())
    setattr(handler, _MARK, True)

    root = logging.getLogger()
    for old in [h for h in root.handlers if getattr(h, _MARK, False)]:
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(parse_level(cfg.normalize_log_level()))

    def cleanup() -> None:
        root.removeHandler(handler)
        handler.flush()
        close()

    return cleanup