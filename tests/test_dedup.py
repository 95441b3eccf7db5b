"""Tests for duplicate descriptor rejection."""

import numpy as np
import pytest

from core.capture.dedup import DeduplicationChecker
from core.errors import CaptureFailure, DuplicateFaceError


def _at_distance(base, distance):
    candidate = base.copy()
    candidate[0] += distance
    return candidate


@pytest.fixture
def enrolled():
    return np.zeros(128, dtype="float32")


class TestDeduplicationChecker:
    def test_close_descriptor_is_duplicate(self, enrolled):
        checker = DeduplicationChecker(threshold=0.5)
        with pytest.raises(DuplicateFaceError) as excinfo:
            checker.check(_at_distance(enrolled, 0.3), [enrolled])
        assert excinfo.value.distance == pytest.approx(0.3)
        assert excinfo.value.code == "duplicate_face"
        assert "already registered" in excinfo.value.message

    def test_far_descriptor_is_accepted(self, enrolled):
        checker = DeduplicationChecker(threshold=0.5)
        assert checker.check(_at_distance(enrolled, 0.6), [enrolled]) == pytest.approx(0.6)

    def test_distance_at_threshold_is_accepted(self, enrolled):
        checker = DeduplicationChecker(threshold=0.5)
        assert checker.check(_at_distance(enrolled, 0.5), [enrolled]) == pytest.approx(0.5)

    def test_minimum_over_all_enrolled(self, enrolled):
        checker = DeduplicationChecker(threshold=0.5)
        others = [_at_distance(enrolled, 2.0), enrolled]
        with pytest.raises(DuplicateFaceError):
            checker.check(_at_distance(enrolled, 0.1), others)

    def test_nothing_enrolled(self, enrolled):
        assert DeduplicationChecker().check(enrolled, []) is None
        assert DeduplicationChecker().check(enrolled, None) is None

    def test_accepts_plain_lists(self):
        checker = DeduplicationChecker(threshold=0.6)
        assert checker.check([0.0, 0.0], [[3.0, 4.0]]) == pytest.approx(5.0)

    def test_length_mismatch_is_capture_failure(self, enrolled):
        with pytest.raises(CaptureFailure):
            DeduplicationChecker().check(enrolled, [np.zeros(64, dtype="float32")])
