"""
Logging setup for the ORIS backend.

Two shapes of output:
    - JSON lines outside development/testing, one object per record
    - Coloured single lines for local work

Besides the request fields set by the timing middleware, records can carry
lifecycle context through ``extra=``:

    logger.error("%s", failure, extra={"risk_id": 7, "action_plan_id": 12})

JSON output nests those keys under ``context``; the readable format appends
them as ``[risk=7 plan=12]``.

Env:
    LOG_LEVEL       root level (default DEBUG in development, INFO otherwise)
    ORIS_LOG_LEVEL  level for the ``oris`` loggers only (default LOG_LEVEL)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id", "user_id")

# extra= key → short label used by the readable formatter
CONTEXT_FIELDS = {
    "risk_id": "risk",
    "action_plan_id": "plan",
    "job_name": "job",
    "event_name": "event",
    "recipient_id": "to",
}

# Chatty third-party loggers: HTTP client used for storage uploads,
# dev server access log, SQL echo, rate limiter storage warnings.
QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter")


def _context(record):
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for key in REQUEST_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        context = _context(record)
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


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
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        context = _context(record)
        if context:
            line += " [" + " ".join(f"{CONTEXT_FIELDS[k]}={v}" for k, v in context.items()) + "]"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level(name, fallback):
    return getattr(logging, (name or "").upper(), fallback)


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    is_testing = app.config.get("TESTING", False)
    use_json = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if use_json else "DEBUG")
    level = _level(level_name, logging.INFO)
    oris_level = _level(os.getenv("ORIS_LOG_LEVEL"), level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("oris").setLevel(oris_level)
    app.logger.setLevel(oris_level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s oris=%s format=%s",
                        logging.getLevelName(level), logging.getLevelName(oris_level),
                        "json" if use_json else "readable")
