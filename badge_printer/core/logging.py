"""
Logging for Badge Printer.

Records are stamped with the HTTP request id when one is active and with the
id of the badge job being printed when the queue thread is working on one, so
a single job can be followed from submission through the printer.

Environment:
- BADGEPRINTER_LOG_LEVEL: root level name (default INFO)
- BADGEPRINTER_JSON_LOGS: emit one JSON object per record
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from typing import Iterator, Optional

_current_job: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("badge_printer_job", default=None)

# Marks handlers installed by configure_logging so a second call replaces only those
_HANDLER_TAG = "_badge_printer_handler"

PLAIN_FORMAT = "[%(asctime)s] %(levelname)s req=%(request_id)s job=%(job_id)s %(name)s: %(message)s"


@contextlib.contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Tag every record logged in this block (on this thread) with `job_id`."""
    token = _current_job.set(job_id)
    try:
        yield
    finally:
        _current_job.reset(token)


def current_job_id() -> Optional[str]:
    return _current_job.get()


class RequestIdFilter(logging.Filter):
    """
    Attach request_id, path and job_id to log records.

    Outside a Flask request (the queue thread, the CLI) request_id and path
    are "-". job_id comes from job_context() or an explicit `extra`.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            from flask import g, has_request_context, request  # lazy import

            in_request = has_request_context()
            record.request_id = getattr(g, "request_id", "-") if in_request else "-"
            record.path = request.path if in_request else "-"
        except ImportError:
            record.request_id = "-"
            record.path = "-"
        if not getattr(record, "job_id", None):
            record.job_id = current_job_id() or "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "job_id": getattr(record, "job_id", "-"),
        }
        path = getattr(record, "path", "-")
        if path != "-":
            base["path"] = path
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() in ("1", "true", "yes")


def _make_handler() -> logging.Handler:
    # Prefer the systemd journal when the optional binding is installed
    try:
        from systemd.journal import JournalHandler  # type: ignore
    except ImportError:
        return logging.StreamHandler()
    return JournalHandler(SYSLOG_IDENTIFIER="badge-printer")


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> logging.Logger:
    """
    Configure root logging for the application and return the root logger.

    `level` and `json_logs` default to BADGEPRINTER_LOG_LEVEL and
    BADGEPRINTER_JSON_LOGS. Handlers added by an earlier call are replaced;
    handlers installed by anything else (pytest's caplog, an embedding app)
    are left alone. Flask's app logger is made to propagate to root.
    """
    root = logging.getLogger()
    level_name = (level or os.environ.get("BADGEPRINTER_LOG_LEVEL", "INFO")).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    root.handlers = [h for h in root.handlers if not getattr(h, _HANDLER_TAG, False)]

    if json_logs is None:
        json_logs = _env_flag("BADGEPRINTER_JSON_LOGS")
    formatter = JsonFormatter() if json_logs else logging.Formatter(PLAIN_FORMAT)

    handler = _make_handler()
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    setattr(handler, _HANDLER_TAG, True)
    root.addHandler(handler)

    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    return root


__all__ = [
    "JsonFormatter",
    "PLAIN_FORMAT",
    "RequestIdFilter",
    "configure_logging",
    "current_job_id",
    "job_context",
]
