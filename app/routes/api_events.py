"""
API routes for Server-Sent Events (SSE)
Live capture session events for the enrollment/attendance UI
"""
import queue

from flask import Blueprint, Response, current_app, request

from app import globals as app_globals

events_api_bp = Blueprint('events_api', __name__, url_prefix='/api/events')

# Browsers wait this long (ms) before reconnecting a dropped stream
RECONNECT_DELAY_MS = 3000


def _parse_last_event_id():
    raw = request.headers.get('Last-Event-ID') or request.args.get('last_event_id')
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _parse_event_types():
    raw = request.args.get('types', '')
    types = [item.strip() for item in raw.split(',') if item.strip()]
    return types or None


@events_api_bp.route('/stream')
def api_events_stream():
    """Stream capture events

    Query: types=capture_state,pose_captured limits the event types.
    A Last-Event-ID header (or last_event_id query) replays missed events.
    """
    broadcaster = app_globals.event_broadcaster
    capture_service = app_globals.capture_service
    keepalive = current_app.config.get('SSE_KEEPALIVE_SECONDS', 15)
    event_types = _parse_event_types()
    last_event_id = _parse_last_event_id()

    def event_stream():
        client = broadcaster.add_client(event_types=event_types, last_event_id=last_event_id)
        try:
            yield f"retry: {RECONNECT_DELAY_MS}\n\n"

            # Fresh connections get the current state so the UI can render at once
            state = capture_service.get_state()
            if last_event_id is None and state is not None and client.wants('capture_state'):
                yield broadcaster.format_sse_message({'type': 'capture_state', 'data': state.to_dict()})

            while True:
                try:
                    yield client.queue.get(timeout=keepalive)
                except queue.Empty:
                    # SSE comment line; ignored by EventSource, keeps proxies from timing out
                    yield ": heartbeat\n\n"
        finally:
            broadcaster.remove_client(client)

    return Response(event_stream(), mimetype='text/event-stream',
                    headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'})
