"""
Logging setup for the rights review service.

Two output styles share one root handler:
    json      one JSON object per line (default outside DEBUG/TESTING)
    readable  colored single-line output for local development

``LOG_LEVEL`` and ``LOG_FORMAT`` environment variables override the defaults.
Every record emitted while a request is being served is tagged with the
request id and the acting user's email by ``RequestContextFilter``, so
service modules only pass domain fields (``rights_request_id``,
``event_type``) through ``extra=``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Record attributes promoted to top-level JSON keys when set
CONTEXT_FIELDS = (
    "request_id",
    "user_email",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "rights_request_id",
    "event_type",
)

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter")


class RequestContextFilter(logging.Filter):
    """Copy ``g.request_id`` / ``g.current_user_email`` onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "user_email", None) is None:
                record.user_email = g.get("current_user_email")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [42ms] (user) #request``"""

    LEVEL_COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{stamp} {record.levelname:<7}{self.RESET} {record.name}: {record.getMessage()}"

        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        user = getattr(record, "user_email", None)
        if user:
            line += f" ({user})"
        rights_request_id = getattr(record, "rights_request_id", None)
        if rights_request_id:
            line += f" #{rights_request_id}"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _default_format(app) -> str:
    if app.config.get("DEBUG") or app.config.get("TESTING"):
        return "readable"
    return "json"


def configure_logging(app):
    """Install the root handler for ``app``; safe to call once per app instance."""
    testing = app.config.get("TESTING", False)
    log_format = os.getenv("LOG_FORMAT", _default_format(app)).lower()
    level_name = os.getenv("LOG_LEVEL", "DEBUG" if app.config.get("DEBUG") else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if log_format == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session; avoid stacking handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, log_format)
