"""
Logging setup for the review engine.

Production writes one JSON document per line so the log shipper can index
request and portal fields; development and tests get a short colored line.
LOG_LEVEL overrides the level in every environment.

Request-scoped values (request_id, session_id, token_kind, ...) arrive on
the record through ``extra=`` from the timing middleware and the services.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Record attributes promoted into the structured output when present
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "session_id",
    "item_id",
    "run_id",
    "token_kind",
)

QUIET_LOGGERS = ("werkzeug", "urllib3", "sqlalchemy.engine", "alembic.runtime")


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, UTC timestamps."""

    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        doc.update(_context(record))
        if record.exc_info:
            doc["exc"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output for a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{stamp} {record.levelname[:4]}{self.RESET} {record.name}: {record.getMessage()}"

        ctx = _context(record)
        tags = []
        if "duration_ms" in ctx:
            tags.append(f"{ctx['duration_ms']:.0f}ms")
        if "session_id" in ctx:
            tags.append(f"session={ctx['session_id']}")
        if "token_kind" in ctx:
            tags.append(f"via={ctx['token_kind']}")
        if tags:
            line += " [" + " ".join(tags) + "]"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON in production, readable everywhere else. Calling it again (one
    app per test) replaces the handler instead of stacking another one.
    """
    testing = app.config.get("TESTING", False)
    production = not (app.config.get("DEBUG", False) or testing)

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready (level=%s, %s output)",
                        level_name, "json" if production else "console")
