# config.py - Configuration and constants for the face capture service

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Flask app configuration
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB, base64 frames are pushed over HTTP
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_DIR = Path(os.getenv('LOG_DIR', 'logs'))

# Camera configuration
CAMERA_INDEX = int(os.getenv('CAMERA_INDEX', '0'))
CAMERA_WIDTH = int(os.getenv('CAMERA_WIDTH', '640'))
CAMERA_HEIGHT = int(os.getenv('CAMERA_HEIGHT', '480'))
CAMERA_WARMUP_FRAMES = int(os.getenv('CAMERA_WARMUP_FRAMES', '3'))
CAMERA_BUFFER_SIZE = int(os.getenv('CAMERA_BUFFER_SIZE', '2'))
CAMERA_MAX_READ_FAILURES = int(os.getenv('CAMERA_MAX_READ_FAILURES', '10'))

# Face models
FACE_MODEL_DIR = os.getenv('FACE_MODEL_DIR') or None  # None -> face_recognition_models package
FACE_DETECT_UPSAMPLE = max(0, int(os.getenv('FACE_DETECT_UPSAMPLE', '0')))
FACE_DESCRIPTOR_JITTERS = max(1, int(os.getenv('FACE_DESCRIPTOR_JITTERS', '1')))
LOAD_MODELS_ON_STARTUP = os.getenv('LOAD_MODELS_ON_STARTUP', '1') == '1'

# Detection cadence
DETECTION_INTERVAL_MS = max(10, int(os.getenv('DETECTION_INTERVAL_MS', '100')))
AUTO_CAPTURE_DELAY_MS = max(0, int(os.getenv('AUTO_CAPTURE_DELAY_MS', '2000')))

# Capture gate
MIN_CONFIDENCE = float(os.getenv('MIN_CONFIDENCE', '0.6'))
MIN_QUALITY_SCORE = float(os.getenv('MIN_QUALITY_SCORE', '0.8'))

# Quality scorer (pixels at the 640x480 reference resolution)
MIN_FACE_SIZE = float(os.getenv('MIN_FACE_SIZE', '160'))
MAX_FACE_SIZE = float(os.getenv('MAX_FACE_SIZE', '1024'))
TOO_CLOSE_FACE_SIZE = float(os.getenv('TOO_CLOSE_FACE_SIZE', '300'))
TOO_FAR_FACE_SIZE = float(os.getenv('TOO_FAR_FACE_SIZE', '120'))
MAX_YAW_DEG = float(os.getenv('MAX_YAW_DEG', '30'))
MAX_PITCH_DEG = float(os.getenv('MAX_PITCH_DEG', '20'))
NORMALIZE_FACE_SIZE = os.getenv('NORMALIZE_FACE_SIZE', '1') == '1'

# Environment assessor
MIN_BRIGHTNESS = float(os.getenv('MIN_BRIGHTNESS', '80'))
MAX_BRIGHTNESS = float(os.getenv('MAX_BRIGHTNESS', '200'))
MAX_EDGE_FRACTION = float(os.getenv('MAX_EDGE_FRACTION', '0.3'))

# Enrollment / deduplication
REQUIRED_POSES = max(1, int(os.getenv('REQUIRED_POSES', '3')))
DESCRIPTOR_DISTANCE_THRESHOLD = float(os.getenv('DESCRIPTOR_DISTANCE_THRESHOLD', '0.6'))
CAPTURE_JPEG_QUALITY = int(os.getenv('CAPTURE_JPEG_QUALITY', '80'))

# Attendance verification
VERIFY_MIN_SIMILARITY = float(os.getenv('VERIFY_MIN_SIMILARITY', '0.8'))
VERIFY_MIN_QUALITY = float(os.getenv('VERIFY_MIN_QUALITY', '0.7'))

# SSE
SSE_KEEPALIVE_SECONDS = float(os.getenv('SSE_KEEPALIVE_SECONDS', '15'))
SSE_QUEUE_SIZE = int(os.getenv('SSE_QUEUE_SIZE', '50'))

# Desktop console: descriptors enrolled from the console, used for dedup
ENROLLED_DESCRIPTORS_FILE = Path(os.getenv('ENROLLED_DESCRIPTORS_FILE', 'data/enrolled_descriptors.npy'))
