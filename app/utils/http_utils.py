"""
HTTP helpers shared by the API blueprints
"""
from flask import jsonify, request

from core.errors import (
    CameraAccessError,
    CaptureError,
    CaptureFailure,
    DuplicateFaceError,
    FrameReadError,
    ModelLoadError,
    ModelNotReadyError,
)
from logging_config import api_logger

# Checked in order, so subclasses must come first
ERROR_STATUS = (
    (DuplicateFaceError, 409),
    (CaptureFailure, 422),
    (FrameReadError, 400),
    (CameraAccessError, 503),
    (ModelLoadError, 503),
    (ModelNotReadyError, 503),
)


def status_for(exc: CaptureError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 409


def capture_error_response(exc: CaptureError):
    """JSON body {'error', 'code'} with the status matching the error kind"""
    status = status_for(exc)
    api_logger.log_error(request.path, f"{exc.code}: {exc.message}", status)
    return jsonify(exc.to_dict()), status


def get_json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
