"""
API routes for system status
Model readiness, camera and session health
"""
from datetime import datetime

from flask import Blueprint, jsonify
from app import globals as app_globals

system_api_bp = Blueprint('system_api', __name__, url_prefix='/api/system')


@system_api_bp.route('/health')
def api_system_health():
    """Health of the face models, camera/session and SSE fan-out"""
    models = app_globals.model_service.get_status()
    capture = app_globals.capture_service.get_status()
    checks = [
        {
            'service': 'Face Models',
            'status': 'healthy' if models['ready'] else ('unhealthy' if models['status'] == 'failed' else 'starting'),
            'detail': models,
        },
        {
            'service': 'Capture Session',
            'status': 'unhealthy' if capture['phase'] == 'failed' else 'healthy',
            'detail': capture,
        },
        {
            'service': 'Event Stream',
            'status': 'healthy',
            'detail': {'clients': app_globals.event_broadcaster.get_client_count()},
        },
    ]
    overall = all(check['status'] == 'healthy' for check in checks)
    return jsonify({
        'success': True,
        'data': {
            'overall': 'healthy' if overall else 'degraded',
            'timestamp': datetime.now().isoformat(),
            'checks': checks,
        }
    })
