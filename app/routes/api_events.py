"""
API routes for Server-Sent Events (SSE)
Các API endpoint cho real-time events
"""
from flask import Blueprint, Response
import json
import queue
from app import globals as app_globals

events_api_bp = Blueprint('events_api', __name__, url_prefix='/api/events')


@events_api_bp.route('/stream')
def api_events_stream():
    """Server-Sent Events stream cho trạng thái phân tích ảnh"""
    broadcaster = app_globals.event_broadcaster

    def event_stream():
        client_queue = broadcaster.add_client()
        try:
            # Gửi event kết nối thành công
            yield f"data: {json.dumps({'type': 'connected'})}\n\n"

            while True:
                try:
                    yield client_queue.get(timeout=30)
                except queue.Empty:
                    # Gửi heartbeat để giữ kết nối
                    yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
        finally:
            broadcaster.remove_client(client_queue)

    return Response(event_stream(), mimetype='text/event-stream')
