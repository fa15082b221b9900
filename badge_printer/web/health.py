"""
Health endpoints for Badge Printer.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded")
- Background worker status and queue size (via PrintQueue.worker_status)
- Queue capacity, plus a count of printing jobs that look stuck
- Printer reachability (via the printer resource's status probe)
"""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint

from .common import current_queue

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    queue = current_queue()
    status: Dict[str, Any] = {"status": "ok"}
    # Worker/queue status
    status.update(queue.worker_status())

    snapshot = queue.status()
    status["capacity"] = snapshot["capacity"]
    stale = [j["id"] for j in snapshot["processing_jobs"] if j.get("stale")]
    status["stale_jobs"] = stale

    printer = queue.printer.status()
    status["printer_ok"] = bool(printer.get("connected"))
    status["printer_id"] = printer.get("printer_id")

    if status["worker_started"] and not status["worker_alive"]:
        status["status"] = "degraded"
        status["reason"] = "worker_stopped"
    elif not status["printer_ok"]:
        status["status"] = "degraded"
        status["reason"] = "printer_unreachable"
    elif stale:
        status["status"] = "degraded"
        status["reason"] = "stale_job"

    return status, 200
