"""
Logging setup for the back office.

Two renderings of the same records:

    text   one line per event, coloured by level when stderr is a terminal
    json   one object per line for the log collector

Each record is stamped with the request id and the signed-in user when it is
emitted inside a request, so a signature or a status change can be traced
back to the call that made it.  ``LOG_FORMAT`` picks the rendering (defaults
to json outside debug and tests); ``LOG_LEVEL`` the threshold.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Context keys read off the record, in display order
CONTEXT_KEYS = (
    "event_type",
    "record",
    "status",
    "user_id",
    "request_id",
    "method",
    "path",
    "duration_ms",
    "remote_addr",
)

LEVEL_COLORS = {
    logging.DEBUG: "\033[2m",
    logging.INFO: "\033[34m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[1;31m",
    logging.CRITICAL: "\033[1;41m",
}
RESET = "\033[0m"


def record_context(record: logging.LogRecord) -> dict:
    context = {}
    for key in CONTEXT_KEYS:
        value = getattr(record, key, None)
        if value not in (None, ""):
            context[key] = value
    return context


class RequestContextFilter(logging.Filter):
    """Copy the request id and authenticated user onto records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "user_id", None) is None:
                record.user_id = getattr(g, "jwt_user_id", None)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = {
                "type": record.exc_info[0].__name__,
                "trace": self.formatException(record.exc_info),
            }
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``12:04:31 INFO  grantdesk.services.x  message  key=value ...``"""

    def __init__(self, colored: bool = False):
        super().__init__()
        self.colored = colored

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<5}"
        if self.colored:
            level = f"{LEVEL_COLORS.get(record.levelno, '')}{level}{RESET}"
        context = record_context(record)
        duration = context.pop("duration_ms", None)
        if duration is not None:
            context["took"] = f"{duration:.0f}ms"
        tail = " ".join(f"{key}={value}" for key, value in context.items())
        line = f"{stamp} {level} {record.name}  {record.getMessage()}"
        if tail:
            line = f"{line}  {tail}"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``."""
    testing = app.config.get("TESTING", False)
    debug = app.config.get("DEBUG", False)

    level_name = (
        app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL") or ("DEBUG" if debug or testing else "INFO")
    ).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    fmt = (app.config.get("LOG_FORMAT") or ("text" if debug or testing else "json")).lower()
    if fmt == "json":
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter(colored=sys.stderr.isatty())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())

    # app factory runs once per test; replace rather than stack handlers
    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready: level=%s format=%s", level_name, fmt)
