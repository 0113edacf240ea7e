"""
API routes for system status
Các API cho trạng thái hệ thống
"""
from flask import Blueprint, current_app, jsonify
from app import globals as app_globals

system_api_bp = Blueprint('system_api', __name__, url_prefix='/api/system')


@system_api_bp.route('/status')
def api_system_status():
    """API trạng thái hệ thống"""
    embedder = app_globals.embedder
    matcher = app_globals.matcher
    broadcaster = app_globals.event_broadcaster
    return jsonify({
        'success': True,
        'embedder': embedder.describe() if embedder else {'ready': False, 'enabled': False},
        'matching': {
            'threshold': matcher.threshold,
            'duplicate_policy': matcher.policy.value,
            'workers': matcher.max_workers,
            'low_confidence_distance': current_app.config['LOW_CONFIDENCE_DISTANCE'],
        },
        'pending_waiters': app_globals.notifier.pending_count(),
        'sse_clients': broadcaster.get_client_count() if broadcaster else 0,
        'photos_in_flight': broadcaster.in_flight_count() if broadcaster else 0,
    })
