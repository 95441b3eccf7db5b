"""
App package initialization
Creates the Flask application and wires the capture services
"""
import atexit
import os

from flask import Flask

import config
from logging_config import register_request_timing, setup_logging
from app import globals as app_globals
from app.models import CaptureService, get_event_broadcaster
from core.capture.config import CaptureConfig
from core.vision.camera_manager import CameraSettings
from services.face_detector import DlibFaceDetector, FaceModelService


def _init_model_service(app):
    """Create the face model service and start loading models in the background"""
    model_service = FaceModelService(
        backend=DlibFaceDetector(
            upsample=app.config['FACE_DETECT_UPSAMPLE'],
            num_jitters=app.config['FACE_DESCRIPTOR_JITTERS'],
        ),
        model_location=app.config['FACE_MODEL_DIR'],
    )
    if app.config['LOAD_MODELS_ON_STARTUP']:
        model_service.load_async()
        app.logger.info("[STARTUP] ⏳ Loading face models in background")
    return model_service


def create_app(config_overrides=None, model_service=None, camera_provider=None):
    """Factory function for the Flask application

    Args:
        config_overrides: dict applied over the values from config.py
        model_service: pre-built FaceModelService (tests inject a stub backend)
        camera_provider: CameraProvider used instead of OpenCV devices
    """
    app = Flask(__name__)

    app.config.from_object(config)
    if config_overrides:
        app.config.update(config_overrides)

    setup_logging(app, log_level=app.config['LOG_LEVEL'], log_dir=app.config['LOG_DIR'])
    register_request_timing(app)
    app.logger.info(f"[STARTUP] Working directory: {os.getcwd()}")

    # 1. Face models
    if model_service is None:
        model_service = _init_model_service(app)
    app_globals.model_service = model_service
    app.logger.info("[STARTUP] ✅ FaceModelService initialized")

    # 2. EventBroadcaster
    app_globals.event_broadcaster = get_event_broadcaster(
        logger=app.logger, queue_size=app.config['SSE_QUEUE_SIZE']
    )
    app.logger.info("[STARTUP] ✅ EventBroadcaster initialized")

    # 3. CaptureService
    capture_config = CaptureConfig.from_settings(app.config)
    app_globals.capture_service = CaptureService(
        model_service=model_service,
        capture_config=capture_config,
        camera_settings=CameraSettings(
            index=app.config['CAMERA_INDEX'],
            width=app.config['CAMERA_WIDTH'],
            height=app.config['CAMERA_HEIGHT'],
            warmup_frames=app.config['CAMERA_WARMUP_FRAMES'],
            buffer_size=app.config['CAMERA_BUFFER_SIZE'],
            max_read_failures=app.config['CAMERA_MAX_READ_FAILURES'],
        ),
        camera_provider=camera_provider,
        broadcaster=app_globals.event_broadcaster,
        logger=app.logger,
    )
    atexit.register(app_globals.capture_service.cleanup)
    app.logger.info("[STARTUP] ✅ CaptureService initialized")

    from app.routes import register_blueprints
    register_blueprints(app)

    return app
