"""
Live Events API

GET /live-events streams Server-Sent Events to dashboards:

- ``device_status``  device registered, came online, handshook or went offline
- ``attendance``     punch stored from an ATTLOG upload

``?types=attendance`` limits the stream to the listed event types. A
``heartbeat`` event is sent whenever the stream has been idle for
SSE_HEARTBEAT_SECONDS.
"""

from queue import Empty

from flask import Blueprint, Response, request, stream_with_context

from adms_server.config import settings
from adms_server.events import device_event_stream
from adms_server.shared.logger import get_logger

bp = Blueprint('live_events', __name__, url_prefix='/')

logger = get_logger("sse")


def _format(event_type: str, data: str) -> str:
    return f"event: {event_type}\ndata: {data}\n\n"


def _requested_types():
    raw = request.args.get('types', '')
    types = [t.strip() for t in raw.split(',') if t.strip()]
    return types or None


@bp.route('/live-events')
def live_events():
    subscription = device_event_stream.subscribe(_requested_types())

    def stream():
        logger.info(f"[SSE] Client connected ({device_event_stream.subscriber_count} open)")
        try:
            yield _format("connected", "Connection established")
            while True:
                try:
                    event_type, data = subscription.get(timeout=settings.SSE_HEARTBEAT_SECONDS)
                except Empty:
                    yield _format("heartbeat", "ping")
                    continue
                yield _format(event_type, data)
        finally:
            device_event_stream.unsubscribe(subscription)
            logger.info("[SSE] Client disconnected")

    return Response(
        stream_with_context(stream()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
