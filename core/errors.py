"""Error taxonomy for the capture pipeline."""
from __future__ import annotations

from typing import Optional


class CaptureError(RuntimeError):
    """Base class for capture errors surfaced to callers."""

    code = "capture_error"
    fatal = False

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class CameraAccessError(CaptureError):
    """Camera permission denied or no device available."""

    code = "camera_access"
    fatal = True


class FrameReadError(CaptureError):
    """A single frame could not be read or decoded."""

    code = "frame_read"


class ModelLoadError(CaptureError):
    """Detector models failed to load; fatal until the process reloads them."""

    code = "model_load"
    fatal = True


class ModelNotReadyError(CaptureError):
    """Detection was requested before the models finished loading."""

    code = "model_not_ready"


class DuplicateFaceError(CaptureError):
    """The candidate face is already enrolled under another identity."""

    code = "duplicate_face"

    def __init__(self, message: str = "This face is already registered in the system", *, distance: float = 0.0) -> None:
        super().__init__(message)
        self.distance = float(distance)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["distance"] = round(self.distance, 4)
        return payload


class CaptureFailure(CaptureError):
    """Detection succeeded but the descriptor or image could not be extracted."""

    code = "capture_failed"
