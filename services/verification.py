"""
1:1 and 1:N descriptor matching for attendance verification.

Similarity is ``max(0, 1 - euclidean_distance)`` rounded to two decimals.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np

from core.capture.types import CaptureResult, as_descriptor

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.7
DEFAULT_MIN_SIMILARITY = 0.8
DEFAULT_MIN_QUALITY = 0.7


@dataclass
class FaceMatch:
    is_match: bool
    similarity: float
    distance: float

    def to_dict(self) -> dict:
        return {
            'is_match': self.is_match,
            'similarity': self.similarity,
            'distance': round(self.distance, 4),
        }


@dataclass
class BestMatch:
    index: int
    similarity: float


@dataclass
class VerificationResult:
    is_valid: bool
    confidence: float
    reason: Optional[str] = None
    match_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'is_valid': self.is_valid,
            'confidence': self.confidence,
            'reason': self.reason,
            'match_index': self.match_index,
        }


def euclidean_distance(a, b) -> float:
    va, vb = as_descriptor(a), as_descriptor(b)
    if va.shape != vb.shape:
        raise ValueError(f"Descriptor length mismatch: {va.shape[0]} != {vb.shape[0]}")
    return float(np.linalg.norm(va - vb))


def compare_faces(a, b, threshold: float = DEFAULT_MATCH_THRESHOLD) -> FaceMatch:
    distance = euclidean_distance(a, b)
    similarity = round(max(0.0, 1.0 - distance), 2)
    return FaceMatch(is_match=similarity >= threshold, similarity=similarity, distance=distance)


def find_best_match(query, stored: Sequence, threshold: float = DEFAULT_MATCH_THRESHOLD) -> Optional[BestMatch]:
    """Highest-similarity stored descriptor at or above ``threshold``, or None."""
    best: Optional[BestMatch] = None
    for index, candidate in enumerate(stored):
        match = compare_faces(query, candidate, threshold)
        if match.is_match and (best is None or match.similarity > best.similarity):
            best = BestMatch(index=index, similarity=match.similarity)
    return best


def verify_capture(
    result: CaptureResult,
    stored: Iterable,
    min_similarity: float = DEFAULT_MIN_SIMILARITY,
    min_quality: float = DEFAULT_MIN_QUALITY,
) -> VerificationResult:
    """Quality gate first, then best match against the stored descriptors."""
    if result.quality.score < min_quality:
        return VerificationResult(is_valid=False, confidence=0.0, reason='Face quality too low')

    stored_list: List = list(stored)
    if not stored_list:
        return VerificationResult(is_valid=False, confidence=0.0, reason='No enrolled face to compare against')

    best = find_best_match(result.descriptor, stored_list, min_similarity)
    if best is None:
        logger.info("[Verify] No match above %.2f", min_similarity)
        return VerificationResult(is_valid=False, confidence=0.0, reason='Face does not match enrolled profile')
    return VerificationResult(is_valid=True, confidence=best.similarity, match_index=best.index)
