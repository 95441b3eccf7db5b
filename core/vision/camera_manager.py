"""Webcam access for the capture loop.

Opening a device records the resolution the driver actually granted (it may
ignore the requested one) and throws away a few frames while auto exposure
settles. A device that keeps failing reads is treated as lost.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

import cv2
import numpy as np

from core.errors import CameraAccessError, FrameReadError

logger = logging.getLogger(__name__)

ReadyCallback = Callable[[int, int], None]
ErrorCallback = Callable[[CameraAccessError], None]


class CameraProvider(Protocol):
    def open(self, index: int) -> cv2.VideoCapture:
        ...


class OpenCVCameraProvider:
    def open(self, index: int) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(index)
        if capture is None or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise CameraAccessError(f"Camera {index} is unavailable or access was denied")
        return capture


@dataclass
class CameraSettings:
    index: int = 0
    width: Optional[int] = 640
    height: Optional[int] = 480
    warmup_frames: int = 3
    warmup_delay: float = 0.05
    buffer_size: Optional[int] = 2
    # consecutive failed reads before the device counts as lost
    max_read_failures: int = 10


@dataclass
class CameraInfo:
    width: int = 0
    height: int = 0
    fps: float = 0.0
    opened_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "fps": round(self.fps, 2),
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
        }


class CameraManager:
    """One webcam handle, opened lazily on the first read.

    ``on_ready(width, height)`` fires after each successful open and
    ``on_error(exc)`` whenever the device cannot be opened or is lost.
    """

    def __init__(
        self,
        settings: Optional[CameraSettings] = None,
        provider: Optional[CameraProvider] = None,
        on_ready: Optional[ReadyCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.settings = settings or CameraSettings()
        self.provider = provider or OpenCVCameraProvider()
        self.on_ready = on_ready
        self.on_error = on_error
        self.info = CameraInfo()
        self._capture: Optional[cv2.VideoCapture] = None
        self._enabled = True
        self._read_failures = 0

    def __enter__(self) -> "CameraManager":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self) -> cv2.VideoCapture:
        if self._capture is not None and self._capture.isOpened():
            return self._capture
        if not self._enabled:
            raise CameraAccessError("Camera is disabled")

        try:
            capture = self.provider.open(self.settings.index)
        except CameraAccessError as exc:
            self._report(exc)
            raise

        self._apply_settings(capture)
        self._warm_up(capture)
        self._capture = capture
        self._read_failures = 0
        if self.on_ready:
            self.on_ready(self.info.width, self.info.height)
        return capture

    def _apply_settings(self, capture: cv2.VideoCapture) -> None:
        settings = self.settings
        try:
            if settings.width:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, settings.width)
            if settings.height:
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, settings.height)
            if settings.buffer_size is not None and hasattr(cv2, "CAP_PROP_BUFFERSIZE"):
                capture.set(cv2.CAP_PROP_BUFFERSIZE, settings.buffer_size)
            self.info = CameraInfo(
                width=int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                height=int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                fps=float(capture.get(cv2.CAP_PROP_FPS) or 0.0),
                opened_at=datetime.now(),
            )
        except cv2.error as exc:
            logger.warning("[Camera] Could not apply capture settings: %s", exc)
            self.info = CameraInfo(opened_at=datetime.now())

        if settings.width and self.info.width and self.info.width != settings.width:
            logger.info("[Camera] Driver chose %sx%s instead of %sx%s",
                        self.info.width, self.info.height, settings.width, settings.height)
        logger.info("[Camera] Opened index %s: %sx%s @ %.1f fps",
                    settings.index, self.info.width, self.info.height, self.info.fps)

    def _warm_up(self, capture: cv2.VideoCapture) -> None:
        frames = max(0, self.settings.warmup_frames)
        if not frames:
            return
        good = 0
        for _ in range(frames):
            ok, _frame = capture.read()
            good += int(bool(ok))
            time.sleep(self.settings.warmup_delay)
        logger.debug("[Camera] Warm-up read %s/%s frames", good, frames)

    def _report(self, exc: CameraAccessError) -> None:
        logger.error("[Camera] %s", exc)
        if self.on_error:
            self.on_error(exc)

    def close(self) -> None:
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()
            logger.info("[Camera] Released index %s", self.settings.index)

    def read(self) -> np.ndarray:
        """Next BGR frame.

        Raises FrameReadError for a single bad read and CameraAccessError once
        ``max_read_failures`` reads in a row have failed.
        """
        if not self._enabled:
            raise FrameReadError("Camera disabled")
        capture = self.open()
        ok, frame = capture.read()
        if ok and frame is not None:
            self._read_failures = 0
            return frame

        self._read_failures += 1
        if self._read_failures >= self.settings.max_read_failures:
            self.close()
            exc = CameraAccessError(f"Camera stopped delivering frames after {self._read_failures} attempts")
            self._read_failures = 0
            self._report(exc)
            raise exc
        raise FrameReadError("Unable to read frame from camera")

    def set_enabled(self, value: bool) -> None:
        self._enabled = bool(value)
        if not self._enabled:
            self.close()

    def is_enabled(self) -> bool:
        return self._enabled

    def is_open(self) -> bool:
        return bool(self._capture is not None and self._capture.isOpened())
