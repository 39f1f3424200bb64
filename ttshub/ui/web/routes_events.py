"""
SSE log stream endpoint.

Provides ``GET /api/events`` — a Server-Sent Events stream of log bus
lines (step output, worker output, service transitions).

Wire format::

    event: log
    id: 47
    data: {"seq":47,"timestamp":1739648400.123,"source_tag":"service","stream":"stdout","text":"..."}

An idle stream sends a ``: keepalive`` comment every few seconds.  On
reconnect, ``Last-Event-Id`` is sent automatically by the browser and
the missed lines are replayed from the bus's ring buffer.
"""

from __future__ import annotations

from flask import Blueprint, Response, current_app, request

events_bp = Blueprint("events", __name__)

HEARTBEAT_SECONDS = 15.0


@events_bp.route("/events")
def event_stream():  # type: ignore[no-untyped-def]
    """SSE endpoint — streams log lines to the client.

    Query params:
        since (int): Resume after this sequence number.  Overridden
            by ``Last-Event-Id`` if present.
        tag (str): Only lines with this source tag.
    """
    since = request.args.get("since", 0, type=int)
    tag = request.args.get("tag") or None

    last_event_id = request.headers.get("Last-Event-Id")
    if last_event_id is not None:
        try:
            since = max(since, int(last_event_id))
        except (ValueError, TypeError):
            pass

    bus = current_app.extensions["ttshub"].bus
    heartbeat = current_app.config.get("SSE_HEARTBEAT", HEARTBEAT_SECONDS)

    def generate():  # type: ignore[no-untyped-def]
        stream = bus.subscribe(since=since, heartbeat=heartbeat)
        try:
            for line in stream:
                if line is None:
                    yield ": keepalive\n\n"
                    continue
                if tag is not None and line.source_tag != tag:
                    continue
                yield (
                    "event: log\n"
                    f"id: {line.seq}\n"
                    f"data: {line.model_dump_json()}\n\n"
                )
        finally:
            stream.close()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Accel-Buffering": "no",      # disable nginx/proxy buffering
            "Connection": "keep-alive",
        },
    )
