"""
API routes for attendance face verification
Compares a captured face against the enrolled descriptors
"""
from datetime import datetime

from flask import Blueprint, jsonify, current_app

from app import globals as app_globals
from app.utils.http_utils import capture_error_response, get_json_body
from core.capture.quality import QualityScorer
from core.capture.types import CaptureResult, as_descriptor_list
from core.errors import CaptureError
from core.vision.pipeline import FrameSampler, decode_image_payload
from logging_config import face_capture_logger
from services.verification import verify_capture

attendance_api_bp = Blueprint('attendance_api', __name__, url_prefix='/api/attendance')


def _capture_from_image(image_data: str):
    """Detect and score a face in an uploaded image; None if no face."""
    frame = FrameSampler(source=None, source_name='upload').wrap(decode_image_payload(image_data), source='upload')
    detection = app_globals.model_service.detect(frame)
    if detection is None:
        return None
    scorer = QualityScorer(app_globals.capture_service.capture_config)
    return CaptureResult(
        descriptor=detection.descriptor,
        image='',
        confidence=detection.confidence,
        quality=scorer.score(detection, frame),
        pose='center',
    )


@attendance_api_bp.route('/face-verify', methods=['POST'])
def api_face_verify():
    """Verify a face against enrolled descriptors

    Body: stored_descriptors (list of descriptors), and either face_image_data
    (base64 image) or nothing, in which case the completed attendance capture
    of the current session is used.
    """
    data = get_json_body()
    stored = data.get('stored_descriptors')
    if not isinstance(stored, list) or not stored:
        return jsonify({'error': 'stored_descriptors is required', 'code': 'bad_request'}), 400

    min_quality = current_app.config['VERIFY_MIN_QUALITY']

    try:
        min_similarity = float(data.get('threshold', current_app.config['VERIFY_MIN_SIMILARITY']))
        image_data = data.get('face_image_data')
        if image_data:
            result = _capture_from_image(image_data)
            if result is None:
                return jsonify({'error': 'No face detected in image', 'code': 'no_face'}), 422
        else:
            result = app_globals.capture_service.get_result()
            if result is None:
                return jsonify({'error': 'Face image data is required', 'code': 'bad_request'}), 400
        verification = verify_capture(
            result,
            as_descriptor_list(stored),
            min_similarity=min_similarity,
            min_quality=min_quality,
        )
    except CaptureError as exc:
        return capture_error_response(exc)
    except (TypeError, ValueError) as exc:
        return jsonify({'error': str(exc), 'code': 'bad_request'}), 400

    face_capture_logger.log_verification(verification.is_valid, verification.confidence, verification.reason)
    return jsonify({
        'success': True,
        'data': {
            'is_match': verification.is_valid,
            'confidence': verification.confidence,
            'threshold': min_similarity,
            'reason': verification.reason,
            'quality': result.quality.to_dict(),
            'timestamp': datetime.now().isoformat(),
        },
        'message': 'Face verification successful' if verification.is_valid else 'Face verification failed',
    })
