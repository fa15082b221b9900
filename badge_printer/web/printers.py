"""
Printer management endpoints for Badge Printer.

This blueprint exposes:
- GET  /api/v1/printers                 : Discover configured printers
- GET  /api/v1/printers/status          : Selected printer and reachability
- POST /api/v1/printers/<id>/connect    : Select a printer
- POST /api/v1/printers/disconnect      : Deselect the current printer
- GET  /api/v1/printers/presets         : List print presets
- POST /api/v1/printers/presets/<name>  : Make a preset the active one
"""

from __future__ import annotations

from flask import Blueprint, current_app

from .common import current_queue

printers_bp = Blueprint("printers", __name__, url_prefix="/api/v1/printers")


@printers_bp.get("")
def list_printers():
    printers = current_queue().printer.discover()
    return {"printers": [p.to_dict() for p in printers]}


@printers_bp.get("/status")
def printer_status():
    return current_queue().printer.status()


@printers_bp.post("/<printer_id>/connect")
def connect_printer(printer_id: str):
    printer = current_queue().printer
    printer.connect(printer_id)
    current_app.logger.info("Printer %s connected via API", printer_id)
    return {"connected": True, "printer_id": printer_id}


@printers_bp.post("/disconnect")
def disconnect_printer():
    current_queue().printer.disconnect()
    return {"connected": False}


@printers_bp.get("/presets")
def list_presets():
    printer = current_queue().printer
    return {"presets": printer.list_presets(), "active": printer.active_preset}


@printers_bp.post("/presets/<name>")
def apply_preset(name: str):
    preset = current_queue().printer.apply_preset(name)
    return {"active": name, "preset": preset.to_dict()}


__all__ = ["printers_bp"]
