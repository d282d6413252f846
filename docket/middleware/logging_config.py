"""
Structured logging configuration.

One stderr handler on the root logger, shared by every module logger:

- Development / testing: human-readable colored lines
- Production: JSON lines (log aggregator compatible)
- LOG_FORMAT ("json" | "readable") and LOG_LEVEL config keys override the defaults

Records emitted while a request is in flight are tagged with its request id
and, on case routes, the case id, so engine and service logs can be joined
to the request that caused them without every call site passing ``extra=``.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Record attributes copied into JSON output
EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "case_id",
    "activity_type",
)

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Fill ``request_id`` / ``case_id`` from the active request when absent."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = getattr(g, "request_id", None)
        if getattr(record, "case_id", None) is None:
            record.case_id = (request.view_args or {}).get("case_id")
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key)
            for key in EXTRA_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger [case N] message [12ms]``, level colored."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        tags = ""
        case_id = getattr(record, "case_id", None)
        if case_id is not None:
            tags += f" [case {case_id}]"
        activity_type = getattr(record, "activity_type", None)
        if activity_type:
            tags += f" [{activity_type}]"
        duration = getattr(record, "duration_ms", None)
        suffix = f" [{duration:.0f}ms]" if duration is not None else ""

        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        color = self.COLORS.get(record.levelname, "")
        line = (f"{color}{ts} {record.levelname:<8}{self.RESET} "
                f"{record.name}{tags}: {record.getMessage()}{suffix}")
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _pick_format(app) -> str:
    fmt = (app.config.get("LOG_FORMAT") or "").lower()
    if fmt in ("json", "readable"):
        return fmt
    is_prod = not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)
    return "json" if is_prod else "readable"


def configure_logging(app):
    """
    Install the root stderr handler for ``app``.

    Level: LOG_LEVEL config key, else INFO for JSON output and DEBUG otherwise.
    Safe to call once per create_app(); the previous handler is replaced.
    """
    fmt = _pick_format(app)
    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if fmt == "json" else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
