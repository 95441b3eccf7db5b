"""
API routes for the face capture session
Start/stop a session, push frames, capture manually, fetch the result
"""
from flask import Blueprint, jsonify, request, current_app

from app import globals as app_globals
from app.utils.http_utils import capture_error_response, get_json_body
from core.errors import CaptureError
from logging_config import log_request_info

capture_api_bp = Blueprint('capture_api', __name__, url_prefix='/api/capture')


@capture_api_bp.route('/session', methods=['POST'])
def api_start_session():
    """Start a capture session (enrollment or attendance)"""
    log_request_info(request)
    data = get_json_body()
    mode = data.get('mode', 'enrollment')
    source = data.get('source', 'camera')
    required_poses = data.get('required_poses')
    existing = data.get('existing_descriptors') or []

    if mode not in ('enrollment', 'attendance'):
        return jsonify({'error': f'Unknown mode: {mode}', 'code': 'bad_request'}), 400
    if source not in ('camera', 'push'):
        return jsonify({'error': f'Unknown source: {source}', 'code': 'bad_request'}), 400
    if required_poses is not None:
        try:
            required_poses = int(required_poses)
        except (TypeError, ValueError):
            return jsonify({'error': 'required_poses must be an integer', 'code': 'bad_request'}), 400
        if required_poses < 1:
            return jsonify({'error': 'required_poses must be at least 1', 'code': 'bad_request'}), 400
    if not isinstance(existing, list):
        return jsonify({'error': 'existing_descriptors must be a list', 'code': 'bad_request'}), 400

    try:
        state = app_globals.capture_service.start_session(
            mode=mode,
            required_poses=required_poses,
            existing_descriptors=existing,
            source=source,
        )
    except CaptureError as exc:
        return capture_error_response(exc)
    except ValueError as exc:
        return jsonify({'error': str(exc), 'code': 'bad_request'}), 400

    return jsonify({'success': True, 'state': state.to_dict()}), 201


@capture_api_bp.route('/session', methods=['GET'])
def api_session_state():
    state = app_globals.capture_service.get_state()
    if state is None:
        return jsonify({'error': 'No capture session is active', 'code': 'no_session'}), 404
    return jsonify({'success': True, 'state': state.to_dict()})


@capture_api_bp.route('/session', methods=['DELETE'])
def api_stop_session():
    """Stop the session and release the camera"""
    stopped = app_globals.capture_service.stop_session()
    return jsonify({'success': True, 'stopped': stopped})


@capture_api_bp.route('/session/frame', methods=['POST'])
def api_push_frame():
    """Push one base64 frame (data URL accepted) into a push-source session"""
    data = get_json_body()
    image_data = data.get('image') or data.get('image_data')
    if not image_data:
        return jsonify({'error': 'Image data is required', 'code': 'bad_request'}), 400

    try:
        payload = app_globals.capture_service.push_frame(image_data)
    except CaptureError as exc:
        return capture_error_response(exc)

    return jsonify({'success': True, **payload})


@capture_api_bp.route('/session/capture', methods=['POST'])
def api_manual_capture():
    """Capture the current face if it passes the quality gate"""
    try:
        result = app_globals.capture_service.capture()
    except CaptureError as exc:
        return capture_error_response(exc)

    if result is None:
        state = app_globals.capture_service.get_state()
        return jsonify({
            'success': False,
            'error': 'No face of sufficient quality to capture',
            'code': 'quality_gate',
            'state': state.to_dict() if state else None,
        }), 409

    state = app_globals.capture_service.get_state()
    current_app.logger.info("[Capture] Manual capture of pose %s", result.pose)
    return jsonify({
        'success': True,
        'capture': result.to_dict(include_image=False),
        'state': state.to_dict() if state else None,
    })


@capture_api_bp.route('/session/reset', methods=['POST'])
def api_reset_session():
    try:
        state = app_globals.capture_service.reset()
    except CaptureError as exc:
        return capture_error_response(exc)
    return jsonify({'success': True, 'state': state.to_dict()})


@capture_api_bp.route('/session/resume', methods=['POST'])
def api_resume_session():
    """Resume detection after it was paused by a duplicate face"""
    try:
        state = app_globals.capture_service.resume()
    except CaptureError as exc:
        return capture_error_response(exc)
    return jsonify({'success': True, 'state': state.to_dict()})


@capture_api_bp.route('/result', methods=['GET'])
def api_capture_result():
    result = app_globals.capture_service.get_result()
    if result is None:
        return jsonify({'error': 'Capture not complete', 'code': 'not_complete'}), 404
    return jsonify({'success': True, 'result': result.to_dict()})
