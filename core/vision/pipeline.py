"""Frame sampling: turns a frame source into timestamped FrameSamples."""
from __future__ import annotations

import base64
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

import cv2
import numpy as np

from core.errors import FrameReadError

logger = logging.getLogger(__name__)


@dataclass
class FrameSample:
    frame_id: str
    timestamp: datetime
    bgr: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def height(self) -> int:
        return int(self.bgr.shape[0])

    @property
    def width(self) -> int:
        return int(self.bgr.shape[1])

    @property
    def rgb(self) -> np.ndarray:
        return cv2.cvtColor(self.bgr, cv2.COLOR_BGR2RGB)


class FrameSource(Protocol):
    def read(self) -> np.ndarray:
        ...


class FrameBuffer:
    """Latest-frame holder fed by pushes (e.g. frames uploaded over HTTP)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None

    def push(self, frame: np.ndarray) -> None:
        if frame is None or frame.ndim != 3 or frame.shape[2] != 3:
            raise FrameReadError("Frame must be an HxWx3 BGR image")
        with self._lock:
            self._frame = frame

    def read(self) -> np.ndarray:
        with self._lock:
            frame = self._frame
        if frame is None:
            raise FrameReadError("No frame has been pushed yet")
        return frame

    def clear(self) -> None:
        with self._lock:
            self._frame = None


class FrameSampler:
    """Pulls frames from a source and wraps them as FrameSamples."""

    def __init__(self, source: FrameSource, source_name: str = "camera"):
        self.source = source
        self.source_name = source_name
        self.frame_counter = 0

    def _next_id(self) -> str:
        self.frame_counter += 1
        return f"frame-{self.frame_counter}"

    def sample(self) -> FrameSample:
        frame = self.source.read()
        if frame is None or getattr(frame, "size", 0) == 0:
            raise FrameReadError("Empty frame")
        return FrameSample(
            frame_id=self._next_id(),
            timestamp=datetime.now(),
            bgr=frame,
            metadata={
                "size": frame.shape,
                "source": self.source_name,
            },
        )

    def wrap(self, frame: np.ndarray, source: str = "push") -> FrameSample:
        """Wrap an externally supplied frame without touching the source."""
        return FrameSample(
            frame_id=self._next_id(),
            timestamp=datetime.now(),
            bgr=frame,
            metadata={"size": frame.shape, "source": source},
        )


def encode_jpeg_data_url(frame: np.ndarray, quality: int = 80) -> str:
    """Encode a BGR frame as a ``data:image/jpeg;base64,...`` URL."""
    ret, buf = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ret:
        raise FrameReadError("JPEG encoding failed")
    return "data:image/jpeg;base64," + base64.b64encode(buf.tobytes()).decode("ascii")


def decode_image_payload(image_data: str) -> np.ndarray:
    """Decode a base64 image (optionally a data URL) into a BGR frame."""
    if not image_data:
        raise FrameReadError("Missing image data")
    if ',' in image_data:
        image_data = image_data.split(',', 1)[1]
    try:
        raw = base64.b64decode(image_data, validate=False)
    except (ValueError, TypeError) as exc:
        raise FrameReadError("Invalid base64 image data") from exc
    frame = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise FrameReadError("Image data could not be decoded")
    return frame
