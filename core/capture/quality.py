"""Landmark-based pose estimation and face quality scoring.

Scores start at 1.0 and are only ever multiplied by penalty factors:

==========================  ======
condition                   factor
==========================  ======
face size below minimum     x0.7
face size above maximum     x0.8
``|yaw| > 30``              x0.6
``|pitch| > 20``            x0.7
==========================  ======

Pixel thresholds are defined at a 480-pixel-high reference frame and scaled to
the actual frame height when it is known. Roll is not estimated and is always
reported as 0.
"""
from __future__ import annotations

import math
from typing import Optional

import cv2
import numpy as np

from core.vision.pipeline import FrameSample
from .config import CaptureConfig
from .types import BoundingBox, Distance, FaceDetection, FaceLandmarks, FaceQuality, HeadPose

# Reported when no frame is available to measure the face region.
DEFAULT_BRIGHTNESS = 0.8
DEFAULT_SHARPNESS = 0.9

SIZE_TOO_SMALL_PENALTY = 0.7
SIZE_TOO_LARGE_PENALTY = 0.8
YAW_PENALTY = 0.6
PITCH_PENALTY = 0.7


def estimate_pose(landmarks: FaceLandmarks, face_size: float) -> HeadPose:
    eye_x, eye_y = landmarks.eye_center
    nose_x, nose_y = landmarks.nose_tip
    values = (eye_x, eye_y, nose_x, nose_y, face_size)
    if not all(math.isfinite(v) for v in values):
        return HeadPose()
    yaw = math.degrees(math.atan2(nose_x - eye_x, nose_y - eye_y))
    pitch = math.degrees(math.atan2(nose_y - eye_y, face_size))
    return HeadPose(yaw=yaw, pitch=pitch, roll=0.0)


def classify_distance(face_size: float, config: CaptureConfig, frame_height: int = 0) -> Distance:
    scale = config.size_scale(frame_height)
    if face_size > config.too_close_size * scale:
        return Distance.TOO_CLOSE
    if face_size < config.too_far_size * scale:
        return Distance.TOO_FAR
    return Distance.GOOD


def _face_crop(frame: FrameSample, box: BoundingBox) -> Optional[np.ndarray]:
    h, w = frame.bgr.shape[:2]
    x1 = max(0, int(box.x))
    y1 = max(0, int(box.y))
    x2 = min(w, int(box.x + box.width))
    y2 = min(h, int(box.y + box.height))
    if x2 <= x1 or y2 <= y1:
        return None
    return frame.bgr[y1:y2, x1:x2]


def measure_face_region(frame: FrameSample, box: BoundingBox) -> tuple[float, float]:
    """Brightness (luma 0..1) and sharpness (normalised Laplacian variance) of the face box."""
    crop = _face_crop(frame, box)
    if crop is None:
        return DEFAULT_BRIGHTNESS, DEFAULT_SHARPNESS
    gray = cv2.cvtColor(crop, cv2.COLOR_BGR2GRAY)
    brightness = float(gray.mean()) / 255.0
    laplacian_var = cv2.Laplacian(gray, cv2.CV_64F).var()
    sharpness = max(0.0, min(float(laplacian_var) / 1500.0, 1.0))
    return brightness, sharpness


class QualityScorer:
    def __init__(self, config: Optional[CaptureConfig] = None):
        self.config = config or CaptureConfig()

    def score(self, detection: FaceDetection, frame: Optional[FrameSample] = None) -> FaceQuality:
        cfg = self.config
        face_size = max(0.0, float(detection.box.size))
        frame_height = frame.height if frame is not None else 0
        scale = cfg.size_scale(frame_height)
        pose = estimate_pose(detection.landmarks, face_size)

        score = 1.0
        if face_size < cfg.min_face_size * scale:
            score *= SIZE_TOO_SMALL_PENALTY
        if face_size > cfg.max_face_size * scale:
            score *= SIZE_TOO_LARGE_PENALTY
        if abs(pose.yaw) > cfg.max_yaw_deg:
            score *= YAW_PENALTY
        if abs(pose.pitch) > cfg.max_pitch_deg:
            score *= PITCH_PENALTY

        if frame is not None:
            brightness, sharpness = measure_face_region(frame, detection.box)
        else:
            brightness, sharpness = DEFAULT_BRIGHTNESS, DEFAULT_SHARPNESS

        return FaceQuality(
            score=score,
            brightness=brightness,
            sharpness=sharpness,
            face_size=face_size,
            pose=pose,
        )

    def distance(self, detection: FaceDetection, frame: Optional[FrameSample] = None) -> Distance:
        return classify_distance(
            detection.box.size,
            self.config,
            frame.height if frame is not None else 0,
        )
