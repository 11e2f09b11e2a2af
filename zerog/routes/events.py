"""Event routes for the Zero-G planner.

Server-Sent Events keep UI surfaces in step with the store; /events/recent
serves the replay buffer to clients that poll instead.
"""

from flask import Blueprint, Response, current_app, jsonify, request

from zerog.services.event_bus import Event

events_bp = Blueprint("events", __name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _requested_types() -> list[str] | None:
    raw = request.args.get("types", "")
    types = [t.strip() for t in raw.split(",") if t.strip()]
    return types or None


@events_bp.route("/events")
def sse_events():
    """Server-Sent Events stream.

    Opens with a `state` event carrying the full snapshot. A reconnecting
    browser sends Last-Event-ID and gets the buffered events it missed.
    Optional ?types=task_completed,reminder narrows the stream.
    """
    session = current_app.extensions["planner_session"]
    state = Event(event_type="state", data=session.store.snapshot().to_dict())

    stream = session.event_bus.get_sse_stream(
        initial=[state],
        last_event_id=request.headers.get("Last-Event-ID"),
        event_types=_requested_types(),
    )
    return Response(stream, mimetype="text/event-stream", headers=SSE_HEADERS)


@events_bp.route("/events/recent", methods=["GET"])
def recent_events():
    """Buffered events after ?since=<id>, optionally of one ?type."""
    bus = current_app.extensions["planner_session"].event_bus
    events = bus.get_buffered_events(
        since_id=request.args.get("since"),
        event_type=request.args.get("type"),
    )
    return jsonify(
        {
            "events": [
                {
                    "id": e.id,
                    "event_type": e.event_type,
                    "timestamp": e.timestamp.isoformat(),
                    "data": e.data,
                }
                for e in events
            ]
        }
    )
