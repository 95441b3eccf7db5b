"""
Logging configuration for the face capture service
"""

import logging
import logging.handlers
import time
from datetime import datetime
from pathlib import Path

from flask import g, request


def setup_logging(app, log_level='INFO', log_dir='logs', max_log_size=10*1024*1024, backup_count=5):
    """
    Set up logging for the Flask app

    Args:
        app: Flask app instance
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_dir: directory for the rotating log files
        max_log_size: maximum size of one log file (bytes)
        backup_count: number of rotated files to keep
    """

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, str(log_level).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'capture_system.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'errors.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Replace handlers from a previous setup (tests create several apps)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(error_handler)

    # Capture session events also go to their own file for attendance audits
    capture_logger = logging.getLogger('face_capture')
    for handler in capture_logger.handlers[:]:
        capture_logger.removeHandler(handler)
        handler.close()
    events_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'capture_events.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    events_handler.setLevel(logging.INFO)
    events_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    capture_logger.addHandler(events_handler)
    capture_logger.setLevel(logging.INFO)
    logging.getLogger('api').setLevel(logging.INFO)

    app.logger.setLevel(log_level)

    app.logger.info("=" * 50)
    app.logger.info("FACE CAPTURE SERVICE STARTUP")
    app.logger.info(f"Timestamp: {datetime.now().isoformat()}")
    app.logger.info(f"Log Level: {logging.getLevelName(log_level)}")
    app.logger.info(f"Log Directory: {log_dir.absolute()}")
    app.logger.info("=" * 50)


class FaceCaptureLogger:
    """Logger for capture session events"""

    def __init__(self):
        self.logger = logging.getLogger('face_capture')

    def log_session_started(self, mode, required_poses, source):
        self.logger.info(f"Session started - Mode: {mode}, Poses: {required_poses}, Source: {source}")

    def log_pose_captured(self, pose, index, required, score):
        self.logger.info(f"Pose captured - {pose} ({index}/{required}), Score: {score:.3f}")

    def log_capture_complete(self, mode, pose, score, confidence):
        self.logger.info(
            f"Capture complete - Mode: {mode}, Pose: {pose}, Score: {score:.3f}, Confidence: {confidence:.3f}"
        )

    def log_capture_error(self, code, message):
        """Duplicates and capture failures are user-correctable, the rest are errors"""
        if code in ('duplicate_face', 'capture_failed'):
            self.logger.warning(f"Capture rejected - Code: {code}, Message: {message}")
        else:
            self.logger.error(f"Capture error - Code: {code}, Message: {message}")

    def log_verification(self, is_valid, confidence, reason=None):
        reason_info = f", Reason: {reason}" if reason else ""
        self.logger.info(f"Verification - Valid: {is_valid}, Confidence: {confidence:.2f}{reason_info}")


class APILogger:
    """Logger for API calls"""

    def __init__(self):
        self.logger = logging.getLogger('api')

    def log_request(self, method, endpoint, ip_address=None):
        ip_info = f", IP: {ip_address}" if ip_address else ""
        self.logger.info(f"API Request - {method} {endpoint}{ip_info}")

    def log_response(self, endpoint, status_code, duration=None):
        duration_info = f", Duration: {duration:.3f}s" if duration else ""
        self.logger.info(f"API Response - {endpoint}, Status: {status_code}{duration_info}")

    def log_error(self, endpoint, error_message, status_code=500):
        self.logger.error(f"API Error - {endpoint}, Status: {status_code}, Error: {error_message}")


face_capture_logger = FaceCaptureLogger()
api_logger = APILogger()


def get_client_ip(request):
    """Client IP, honouring reverse-proxy headers"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    else:
        return request.remote_addr


def log_request_info(request):
    ip_address = get_client_ip(request)
    api_logger.log_request(request.method, request.endpoint, ip_address=ip_address)
    return ip_address


def register_request_timing(app):
    """Log status and duration of every API call (the SSE stream is skipped)"""

    @app.before_request
    def _start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def _log_response(response):
        started = g.pop('request_started', None)
        if started is not None and request.path.startswith('/api/') and not response.is_streamed:
            api_logger.log_response(request.path, response.status_code, time.perf_counter() - started)
        return response
