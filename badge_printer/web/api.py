"""
JSON API (v1) for Badge Printer.

Endpoints:
- POST   /api/v1/badges                     : Submit a badge job (async). Returns 202 + Location
- POST   /api/v1/badges/preview             : Render a badge to PNG without queueing it
- GET    /api/v1/queue                      : Queue snapshot (counts, queued order, processing job, capacity)
- GET    /api/v1/jobs/history               : Page of completed/failed jobs
- GET    /api/v1/jobs/<job_id>              : Fetch one job (active or finished)
- DELETE /api/v1/jobs/<job_id>              : Cancel a queued (or abortable printing) job
- POST   /api/v1/jobs/<job_id>/retry        : Re-queue a failed job
- POST   /api/v1/jobs/<job_id>/intervention : Manual reset/complete/fail
- GET    /api/v1/templates                  : Available badge templates

Payload shape (POST /api/v1/badges):
{"templateId": str, "uid": str, "badgeName": str, "preset": str (optional)}

Queue errors are mapped to JSON by the app-level error handlers.
"""

from __future__ import annotations

from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file, url_for

from badge_printer.core.errors import NotFound

from . import schemas
from .common import current_queue, json_body, json_error

api_bp = Blueprint("api", __name__, url_prefix="/api/v1")


@api_bp.post("/badges")
def submit_badge():
    """
    Validate a badge submission and enqueue it.
    Returns 202 Accepted with a Location header to the job resource.
    """
    if not request.is_json:
        return json_error("unsupported_media_type", "Expected application/json body", 415)

    req = schemas.BadgeSubmitRequest.model_validate(json_body())
    queue = current_queue()
    job_id = queue.submit(req.template_id, req.uid, req.badge_name, preset=req.preset)

    api_href = url_for("api.get_job", job_id=job_id)
    resp_model = schemas.BadgeAcceptedResponse(
        id=job_id,
        status="queued",
        links=schemas.Links(self=api_href, queue=url_for("api.queue_status")),
    )
    resp = jsonify(resp_model.model_dump())
    resp.status_code = 202
    resp.headers["Location"] = api_href
    current_app.logger.info("POST /badges accepted job=%s uid=%s", job_id, req.uid)
    return resp


@api_bp.post("/badges/preview")
def preview_badge():
    """
    Render a badge exactly as it would be printed and return it as PNG.
    No job is created and the printer is not touched. A RenderError is
    answered as JSON by the app-level handler.
    """
    if not request.is_json:
        return json_error("unsupported_media_type", "Expected application/json body", 415)

    req = schemas.BadgeSubmitRequest.model_validate(json_body())
    renderer = current_queue().renderer
    if renderer.get_template(req.template_id) is None:
        raise NotFound(f"Template with ID {req.template_id!r} does not exist", field="template_id")

    img = renderer.render(req.template_id, req.uid, req.badge_name)
    buf = BytesIO()
    img.save(buf, format="PNG")
    buf.seek(0)
    resp = send_file(buf, mimetype="image/png")
    resp.headers["Cache-Control"] = "no-cache"
    return resp


@api_bp.get("/queue")
def queue_status():
    queue = current_queue()
    data = queue.status()
    data["worker"] = queue.worker_status()
    return data


@api_bp.get("/queue/capacity")
def queue_capacity():
    return current_queue().capacity()


@api_bp.get("/jobs/history")
def job_history():
    """
    Page through finished jobs, newest first. Query: status, limit, offset.
    """
    query = schemas.HistoryQuery.model_validate(request.args.to_dict())
    return current_queue().history(query.status, limit=query.limit, offset=query.offset)


@api_bp.get("/jobs/<job_id>")
def get_job(job_id: str):
    job = current_queue().get_job(job_id)
    if job is None:
        raise NotFound(f"Job with ID {job_id} not found", job_id=job_id)
    return job.to_dict()


@api_bp.delete("/jobs/<job_id>")
def cancel_job(job_id: str):
    current_queue().cancel(job_id)
    current_app.logger.info("DELETE /jobs/%s cancelled", job_id)
    return {"id": job_id, "cancelled": True}


@api_bp.post("/jobs/<job_id>/retry")
def retry_job(job_id: str):
    req = schemas.RetryRequest.model_validate(json_body())
    job = current_queue().retry(job_id, override=req.override)
    return job.to_dict()


@api_bp.post("/jobs/<job_id>/intervention")
def intervene_job(job_id: str):
    req = schemas.InterventionRequest.model_validate(json_body())
    job = current_queue().intervene(job_id, req.action, req.reason)
    current_app.logger.info("POST /jobs/%s/intervention action=%s", job_id, req.action)
    return job.to_dict()


@api_bp.get("/templates")
def list_templates():
    return {"templates": current_queue().renderer.list_templates()}


__all__ = ["api_bp"]
