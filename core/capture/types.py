"""Value types shared by the capture pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

Point = Tuple[float, float]


class CaptureMode(str, Enum):
    ENROLLMENT = "enrollment"
    ATTENDANCE = "attendance"


class Lighting(str, Enum):
    GOOD = "good"
    POOR = "poor"
    CHECKING = "checking"


class Distance(str, Enum):
    GOOD = "good"
    TOO_CLOSE = "too_close"
    TOO_FAR = "too_far"
    CHECKING = "checking"


class Background(str, Enum):
    GOOD = "good"
    BUSY = "busy"
    CHECKING = "checking"


@dataclass(frozen=True)
class PoseRequirement:
    name: str
    instruction: str


POSE_REQUIREMENTS: Tuple[PoseRequirement, ...] = (
    PoseRequirement("center", "Look straight at the camera"),
    PoseRequirement("left", "Turn your head slightly to the left"),
    PoseRequirement("right", "Turn your head slightly to the right"),
)


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def size(self) -> float:
        return min(self.width, self.height)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class FaceLandmarks:
    """Named landmarks used for pose estimation plus the raw point set."""

    left_eye: Point
    right_eye: Point
    nose_tip: Point
    points: Tuple[Point, ...] = ()

    @property
    def eye_center(self) -> Point:
        return (
            (self.left_eye[0] + self.right_eye[0]) / 2.0,
            (self.left_eye[1] + self.right_eye[1]) / 2.0,
        )


@dataclass
class FaceDetection:
    box: BoundingBox
    landmarks: FaceLandmarks
    descriptor: np.ndarray
    confidence: float


@dataclass(frozen=True)
class HeadPose:
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"yaw": round(self.yaw, 2), "pitch": round(self.pitch, 2), "roll": round(self.roll, 2)}


@dataclass(frozen=True)
class FaceQuality:
    score: float
    brightness: float
    sharpness: float
    face_size: float
    pose: HeadPose = field(default_factory=HeadPose)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 4),
            "brightness": round(self.brightness, 4),
            "sharpness": round(self.sharpness, 4),
            "face_size": self.face_size,
            "pose": self.pose.to_dict(),
        }


@dataclass(frozen=True)
class EnvironmentCheck:
    lighting: Lighting = Lighting.CHECKING
    distance: Distance = Distance.CHECKING
    background: Background = Background.CHECKING

    def with_distance(self, distance: Distance) -> "EnvironmentCheck":
        return EnvironmentCheck(lighting=self.lighting, distance=distance, background=self.background)

    def to_dict(self) -> Dict[str, str]:
        return {
            "lighting": self.lighting.value,
            "distance": self.distance.value,
            "background": self.background.value,
        }


@dataclass
class CaptureResult:
    descriptor: np.ndarray
    image: str
    confidence: float
    quality: FaceQuality
    pose: str

    def to_dict(self, include_image: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "descriptor": [float(v) for v in self.descriptor],
            "confidence": round(float(self.confidence), 4),
            "quality": self.quality.to_dict(),
            "pose": self.pose,
        }
        if include_image:
            payload["image"] = self.image
        return payload


@dataclass
class DetectionState:
    """Snapshot of what the orchestrator currently sees."""

    phase: str
    mode: CaptureMode
    is_detecting: bool = False
    face_detected: bool = False
    confidence: float = 0.0
    quality: Optional[FaceQuality] = None
    box: Optional[BoundingBox] = None
    current_pose: str = "center"
    instruction: str = ""
    environment: EnvironmentCheck = field(default_factory=EnvironmentCheck)
    captured: int = 0
    required: int = 1
    hold_progress: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "mode": self.mode.value,
            "is_detecting": self.is_detecting,
            "face_detected": self.face_detected,
            "confidence": round(self.confidence, 4),
            "quality": self.quality.to_dict() if self.quality else None,
            "box": self.box.to_dict() if self.box else None,
            "current_pose": self.current_pose,
            "instruction": self.instruction,
            "environment": self.environment.to_dict(),
            "captured": self.captured,
            "required": self.required,
            "hold_progress": round(self.hold_progress, 3),
        }


def as_descriptor(values: Any) -> np.ndarray:
    """Coerce a list/array of floats to a flat float32 descriptor."""
    return np.asarray(values, dtype="float32").ravel()


def as_descriptor_list(values: Optional[List[Any]]) -> List[np.ndarray]:
    if not values:
        return []
    return [as_descriptor(v) for v in values]
