"""
Structured logging configuration.

Production writes one JSON object per line; development and tests get a
coloured single-line format. ``LOG_FORMAT=json|readable`` forces either one,
``LOG_LEVEL`` sets the level.

Rollover code attaches its scope with ``extra=`` (org, role, site, staff,
target week, stage, ledger run id). ``RequestContextFilter`` adds the HTTP
request id to every record logged while a request is being served, so a
manual trigger can be followed from the access log into the tick it ran.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
SCOPE_FIELDS = ("org_id", "role_id", "location_id", "staff_id", "target_week", "stage", "run_id")


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in REQUEST_FIELDS + SCOPE_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val if isinstance(val, (int, float, bool)) else str(val)
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        scope = " ".join(
            f"{key}={getattr(record, key)}"
            for key in SCOPE_FIELDS
            if getattr(record, key, None) is not None
        )
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        if scope:
            line += f" ({scope})"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _use_json(app) -> bool:
    forced = os.getenv("LOG_FORMAT", "").strip().lower()
    if forced in ("json", "readable"):
        return forced == "json"
    return not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)


def configure_logging(app):
    """Install a single root handler; safe to call once per ``create_app``."""
    use_json = _use_json(app)
    default_level = "INFO" if use_json else "DEBUG"
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if use_json else "readable")
