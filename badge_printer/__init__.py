"""
Badge Printer package

This module provides an application factory with minimal wiring:
- Configures logging via badge_printer.core.logging
- Creates a JSON-only Flask app
- Builds the print queue (job store, printer, renderer, status publisher)
  unless one is injected, and stores it in app.extensions
- Maps QueueError and pydantic validation errors to JSON responses
- Registers the API, printers, events and health blueprints
- Optionally starts the background worker
"""

from __future__ import annotations

import importlib
import logging
import os
import uuid
from collections.abc import Mapping, Sequence
from typing import Any, Optional

from flask import Flask, g, request

from badge_printer.core.config import QueueSettings, load_config
from badge_printer.core.db import JobStore
from badge_printer.core.errors import PrinterConnectionError, QueueError
from badge_printer.core.logging import configure_logging
from badge_printer.printing.events import StatusPublisher
from badge_printer.printing.printer import EscposPrinterResource
from badge_printer.printing.render import BadgeRenderer
from badge_printer.printing.worker import PrintQueue

QUEUE_EXTENSION = "badge_printer.queue"

logger = logging.getLogger(__name__)

DEFAULT_BLUEPRINTS: Sequence[tuple[str, str]] = (
    ("badge_printer.web.api", "api_bp"),  # jobs, queue, templates
    ("badge_printer.web.printers", "printers_bp"),  # printer discovery/presets
    ("badge_printer.web.events", "events_bp"),  # server-sent status events
    ("badge_printer.web.health", "health_bp"),  # health endpoint
)


def build_queue(config: Optional[Mapping[str, Any]] = None, db_path: Optional[str] = None) -> PrintQueue:
    """
    Wire a PrintQueue from a config mapping.

    Connects to config["printer_id"] (or "default") when possible; an
    unreachable printer is logged and left for the operator to connect later.
    """
    cfg = dict(config or {})
    settings = QueueSettings.from_config(cfg)
    printer = EscposPrinterResource(cfg)
    renderer = BadgeRenderer(config=cfg)
    publisher = StatusPublisher(buffer_size=int(cfg.get("event_buffer_size", 256)))
    store = JobStore(db_path)

    printer_id = str(cfg.get("printer_id") or "default")
    try:
        printer.connect(printer_id)
    except PrinterConnectionError as e:
        logger.warning("Printer not connected at startup: %s", e.message)
    if settings.default_preset in printer.presets:
        printer.apply_preset(settings.default_preset)

    return PrintQueue(store, printer, renderer, publisher=publisher, settings=settings)


def _set_request_id() -> None:
    """
    Assign a request ID for logging, honoring an incoming X-Request-ID.
    """
    g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex


def _register_error_handlers(app: Flask) -> None:
    from pydantic import ValidationError as PydanticValidationError

    @app.errorhandler(QueueError)
    def _queue_error(err: QueueError):
        if err.http_status >= 500:
            app.logger.error("%s: %s", err.code, err.message)
        return err.to_dict(), err.http_status

    @app.errorhandler(PydanticValidationError)
    def _pydantic_error(err: PydanticValidationError):
        try:
            first = err.errors()[0]
            msg = first.get("msg") or str(err)
            loc = ".".join(str(p) for p in first.get("loc", ()))
        except IndexError:
            msg, loc = str(err), ""
        body = {"error": "validation_error", "message": msg}
        if loc:
            body["field"] = loc
        return body, 400

    @app.errorhandler(404)
    def _not_found(_err):
        return {"error": "not_found", "message": "Resource not found"}, 404

    @app.errorhandler(405)
    def _method_not_allowed(_err):
        return {"error": "method_not_allowed", "message": "Method not allowed"}, 405


def create_app(
    config_overrides: Optional[dict] = None,
    blueprints: Optional[Sequence[tuple[str, str]]] = None,
    register_worker: bool = True,
    print_queue: Optional[PrintQueue] = None,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults.
      BADGEPRINTER_SETTINGS (a mapping) replaces the JSON config file and
      BADGEPRINTER_DB_PATH picks the job database.
    - blueprints: optional list of (import_path, attribute) tuples to register
      If None, the default set is registered.
    - register_worker: if True, starts the queue's background worker
    - print_queue: an already built queue (tests inject one with fakes)

    Returns:
    - Flask app instance
    """
    app = Flask("badge_printer")

    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("BADGEPRINTER_MAX_CONTENT_LENGTH", 64 * 1024))
    app.config["BADGEPRINTER_SSE_HEARTBEAT"] = float(os.environ.get("BADGEPRINTER_SSE_HEARTBEAT", 15))
    if config_overrides:
        app.config.update(config_overrides)

    # Logging
    configure_logging()
    app.logger.info("Badge Printer app created")

    # Strict slashes off for more forgiving routing
    app.url_map.strict_slashes = False

    @app.before_request
    def _before_request():
        _set_request_id()

    @app.after_request
    def _after_request(response):
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

    _register_error_handlers(app)

    if print_queue is None:
        cfg = app.config.get("BADGEPRINTER_SETTINGS")
        if cfg is None:
            cfg = load_config() or {}
            if not cfg:
                app.logger.warning("No config file found; using defaults")
        print_queue = build_queue(cfg, app.config.get("BADGEPRINTER_DB_PATH"))
    app.extensions[QUEUE_EXTENSION] = print_queue

    for import_path, attr in blueprints or DEFAULT_BLUEPRINTS:
        mod = importlib.import_module(import_path)
        app.register_blueprint(getattr(mod, attr))
        app.logger.debug("Registered blueprint: %s.%s", import_path, attr)

    if register_worker:
        print_queue.start()
        app.logger.info("Background worker started")

    return app


__all__ = ["QUEUE_EXTENSION", "build_queue", "create_app"]
