"""
Helpers shared by the Badge Printer blueprints.
"""

from __future__ import annotations

from typing import Any, Dict

from flask import current_app, jsonify, request

from badge_printer.printing.worker import PrintQueue


def current_queue() -> PrintQueue:
    """The PrintQueue owned by the running app."""
    from badge_printer import QUEUE_EXTENSION

    return current_app.extensions[QUEUE_EXTENSION]


def json_error(error: str, message: str, code: int = 400):
    return jsonify({"error": error, "message": message}), code


def json_body() -> Dict[str, Any]:
    """
    The request's JSON object, or {} for an empty body. Non-object JSON is
    treated as empty so schema validation reports the missing fields.
    """
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


__all__ = ["current_queue", "json_body", "json_error"]
