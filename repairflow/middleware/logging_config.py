"""
Logging setup for the issue workflow service.

Two output shapes share one set of context fields:
    - json      one object per line for the log shipper (production default)
    - readable  coloured single line for a terminal (development / tests)

``LOG_FORMAT`` (json | readable) overrides the environment default and
``LOG_LEVEL`` sets the threshold.  Services pass workflow context through
``extra=`` (issue_id, actor, action, from_status, to_status); request
middleware adds method/path/status/duration_ms/request_id.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
WORKFLOW_FIELDS = ("issue_id", "actor", "action", "from_status", "to_status")

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic.runtime.migration")


def _context(record: logging.LogRecord, fields) -> dict:
    return {name: getattr(record, name) for name in fields if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, with request and workflow context nested."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        request_ctx = _context(record, REQUEST_FIELDS)
        if request_ctx:
            entry["request"] = request_ctx
        workflow_ctx = _context(record, WORKFLOW_FIELDS)
        if workflow_ctx:
            entry["workflow"] = workflow_ctx
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Terminal formatter: level colour, then the message, then workflow context."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        line = f"{stamp} {colour}{record.levelname[:4]}{self.RESET} {record.name} | {record.getMessage()}"

        wf = _context(record, WORKFLOW_FIELDS)
        if wf:
            move = ""
            if "from_status" in wf or "to_status" in wf:
                move = f" {wf.get('from_status', '?')}->{wf.get('to_status', '?')}"
            who = f" by {wf['actor']}" if "actor" in wf else ""
            line += f"  [{wf.get('issue_id', '-')}{move}{who}]"

        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Production (not DEBUG, not TESTING) logs JSON at INFO; everything else
    logs readable lines at DEBUG, unless LOG_FORMAT / LOG_LEVEL say otherwise.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    fmt = os.getenv("LOG_FORMAT", "json" if production else "readable").lower()
    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())

    root = logging.getLogger()
    # replace, not append: create_app runs once per test session and per worker
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready (format=%s level=%s)", fmt, logging.getLevelName(level))
