"""Thresholds and timings for the capture pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

_SETTING_NAMES = {
    'detection_interval_ms': 'DETECTION_INTERVAL_MS',
    'auto_capture_delay_ms': 'AUTO_CAPTURE_DELAY_MS',
    'min_confidence': 'MIN_CONFIDENCE',
    'min_quality_score': 'MIN_QUALITY_SCORE',
    'min_face_size': 'MIN_FACE_SIZE',
    'max_face_size': 'MAX_FACE_SIZE',
    'max_yaw_deg': 'MAX_YAW_DEG',
    'max_pitch_deg': 'MAX_PITCH_DEG',
    'too_close_size': 'TOO_CLOSE_FACE_SIZE',
    'too_far_size': 'TOO_FAR_FACE_SIZE',
    'normalize_to_frame': 'NORMALIZE_FACE_SIZE',
    'min_brightness': 'MIN_BRIGHTNESS',
    'max_brightness': 'MAX_BRIGHTNESS',
    'max_edge_fraction': 'MAX_EDGE_FRACTION',
    'duplicate_distance_threshold': 'DESCRIPTOR_DISTANCE_THRESHOLD',
    'required_poses': 'REQUIRED_POSES',
    'jpeg_quality': 'CAPTURE_JPEG_QUALITY',
}


@dataclass
class CaptureConfig:
    # Detection cadence and auto-capture dwell
    detection_interval_ms: int = 100
    auto_capture_delay_ms: int = 2000

    # Gate
    min_confidence: float = 0.6
    min_quality_score: float = 0.8

    # Quality scorer, expressed at the reference resolution
    min_face_size: float = 160.0
    max_face_size: float = 1024.0
    max_yaw_deg: float = 30.0
    max_pitch_deg: float = 20.0
    too_close_size: float = 300.0
    too_far_size: float = 120.0
    reference_height: int = 480
    normalize_to_frame: bool = True

    # Environment assessor
    min_brightness: float = 80.0
    max_brightness: float = 200.0
    edge_delta: int = 50
    max_edge_fraction: float = 0.3

    # Deduplication
    duplicate_distance_threshold: float = 0.6

    # Enrollment
    required_poses: int = 3

    # Snapshot encoding
    jpeg_quality: int = 80

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "CaptureConfig":
        """Build from upper-case setting names (Flask config, the config module's vars())."""
        values = {}
        for name, key in _SETTING_NAMES.items():
            if key in settings and settings[key] is not None:
                values[name] = settings[key]
        return cls(**values)

    def size_scale(self, frame_height: int) -> float:
        """Factor applied to pixel thresholds for a frame of the given height."""
        if not self.normalize_to_frame or not frame_height or self.reference_height <= 0:
            return 1.0
        return float(frame_height) / float(self.reference_height)
