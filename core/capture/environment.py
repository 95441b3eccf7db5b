"""Frame-level lighting and background heuristics."""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from core.vision.pipeline import FrameSample
from .config import CaptureConfig
from .types import Background, Distance, EnvironmentCheck, Lighting

logger = logging.getLogger(__name__)


def average_brightness(bgr: np.ndarray) -> float:
    """Mean of the per-pixel RGB average on a 0-255 scale."""
    return float(bgr[..., :3].mean())


def edge_fraction(bgr: np.ndarray, delta: int = 50) -> float:
    """Share of row-major neighbouring pixels whose red values differ by more than ``delta``.

    Pixels are walked as one flat sequence, so the last pixel of a row is
    compared against the first pixel of the next row.
    """
    red = bgr[..., 2].ravel().astype(np.int16)
    if red.size < 2:
        return 0.0
    edges = np.count_nonzero(np.abs(np.diff(red)) > delta)
    return float(edges) / float(red.size)


def classify_lighting(brightness: float, config: CaptureConfig) -> Lighting:
    if brightness < config.min_brightness or brightness > config.max_brightness:
        return Lighting.POOR
    return Lighting.GOOD


def classify_background(fraction: float, config: CaptureConfig) -> Background:
    return Background.BUSY if fraction > config.max_edge_fraction else Background.GOOD


class EnvironmentAssessor:
    """Computes an EnvironmentCheck per sampled frame.

    Distance is reported as ``good`` here; the orchestrator overwrites it from
    the face box once a detection is available.
    """

    def __init__(self, config: Optional[CaptureConfig] = None):
        self.config = config or CaptureConfig()

    def measure(self, frame: FrameSample) -> tuple[float, float]:
        bgr = frame.bgr
        if bgr is None or bgr.ndim != 3 or bgr.shape[2] < 3 or bgr.size == 0:
            raise ValueError("Frame is not a decodable colour image")
        return average_brightness(bgr), edge_fraction(bgr, self.config.edge_delta)

    def assess(self, frame: FrameSample) -> Optional[EnvironmentCheck]:
        """Return a fresh check, or None when the frame cannot be assessed."""
        try:
            brightness, fraction = self.measure(frame)
        except (ValueError, AttributeError, IndexError) as exc:
            logger.debug("[Environment] Skipping frame %s: %s", getattr(frame, "frame_id", "?"), exc)
            return None
        return EnvironmentCheck(
            lighting=classify_lighting(brightness, self.config),
            distance=Distance.GOOD,
            background=classify_background(fraction, self.config),
        )
