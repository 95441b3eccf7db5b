"""Reject enrollment descriptors that already belong to an enrolled identity."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np

from core.errors import CaptureFailure, DuplicateFaceError
from .types import as_descriptor

logger = logging.getLogger(__name__)


class DeduplicationChecker:
    def __init__(self, threshold: float = 0.6):
        self.threshold = float(threshold)

    def distances(self, candidate: np.ndarray, existing: Iterable[np.ndarray]) -> np.ndarray:
        query = as_descriptor(candidate)
        stored = [as_descriptor(d) for d in existing]
        if not stored:
            return np.empty((0,), dtype="float32")
        for descriptor in stored:
            if descriptor.shape != query.shape:
                raise CaptureFailure(
                    f"Descriptor length mismatch: {descriptor.shape[0]} != {query.shape[0]}"
                )
        return np.linalg.norm(np.stack(stored) - query, axis=1)

    def check(self, candidate: np.ndarray, existing: Optional[Iterable[np.ndarray]]) -> Optional[float]:
        """Return the minimum distance (None if nothing enrolled) or raise DuplicateFaceError."""
        dists = self.distances(candidate, existing or [])
        if dists.size == 0:
            return None
        min_distance = float(dists.min())
        if min_distance < self.threshold:
            logger.info("[Dedup] Duplicate face rejected (distance=%.4f < %.2f)", min_distance, self.threshold)
            raise DuplicateFaceError(distance=min_distance)
        return min_distance
