"""
Server-sent events for Badge Printer.

GET /api/v1/events streams one `snapshot` event with the current queue
status, then one event per job transition (`jobStatusChange`, or
`jobRemoved` for cancellations). Idle periods are filled with SSE comments
so proxies keep the connection open.

Query parameters:
- max_events: close the stream after this many transition events
"""

from __future__ import annotations

import json
from typing import Any, Iterator, Optional

from flask import Blueprint, Response, current_app, request, stream_with_context

from badge_printer.printing.events import StatusEvent, Subscription

from .common import current_queue, json_error

events_bp = Blueprint("events", __name__, url_prefix="/api/v1")


def _format(event: str, data: Any, event_id: Optional[int] = None) -> str:
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, default=str)}")
    return "\n".join(lines) + "\n\n"


def _stream(sub: Subscription, snapshot: dict, heartbeat: float, max_events: Optional[int]) -> Iterator[str]:
    sent = 0
    try:
        yield _format("snapshot", snapshot)
        for event in sub.iter(timeout=heartbeat):
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield _format(event.kind, _payload(event), event.seq)
            sent += 1
            if max_events is not None and sent >= max_events:
                break
    finally:
        sub.close()


def _payload(event: StatusEvent) -> dict:
    data = event.to_dict()
    data.pop("seq", None)
    return data


@events_bp.get("/events")
def stream_events():
    queue = current_queue()
    if queue.publisher is None:
        return json_error("unavailable", "Status events are disabled", 503)

    max_events = request.args.get("max_events", type=int)
    if max_events is not None and max_events < 1:
        return json_error("validation_error", "max_events must be a positive integer", 400)

    # Subscribe before taking the snapshot so no transition falls in between.
    sub = queue.publisher.subscribe()
    snapshot = queue.status()
    heartbeat = float(current_app.config.get("BADGEPRINTER_SSE_HEARTBEAT", 15))

    resp = Response(
        stream_with_context(_stream(sub, snapshot, heartbeat, max_events)),
        mimetype="text/event-stream",
    )
    resp.headers["Cache-Control"] = "no-cache"
    resp.headers["X-Accel-Buffering"] = "no"
    return resp


__all__ = ["events_bp"]
