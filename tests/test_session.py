"""Tests for enrollment session bookkeeping."""

import numpy as np
import pytest

from core.capture.session import EnrollmentSession
from core.capture.types import CaptureResult, FaceQuality


def _result(pose, score):
    return CaptureResult(
        descriptor=np.zeros(128, dtype="float32"),
        image="data:image/jpeg;base64,",
        confidence=0.9,
        quality=FaceQuality(score=score, brightness=0.8, sharpness=0.9, face_size=200),
        pose=pose,
    )


class TestEnrollmentSession:
    def test_completes_exactly_at_required(self):
        session = EnrollmentSession(required=3)
        for pose in ("center", "left"):
            session.add(_result(pose, 0.9))
            assert not session.is_complete()
        session.add(_result("right", 0.9))
        assert session.is_complete()

    def test_best_is_max_score(self):
        session = EnrollmentSession(required=3)
        for pose, score in zip(("center", "left", "right"), (0.65, 0.91, 0.78)):
            session.add(_result(pose, score))
        best = session.best()
        assert best.pose == "left"
        assert best.quality.score == 0.91

    def test_tie_keeps_earliest(self):
        session = EnrollmentSession(required=2)
        session.add(_result("center", 0.9))
        session.add(_result("left", 0.9))
        assert session.best().pose == "center"

    def test_pose_sequence(self):
        session = EnrollmentSession(required=3)
        assert session.current_pose.name == "center"
        session.add(_result("center", 0.9))
        assert session.current_pose.name == "left"
        assert session.current_pose.instruction == "Turn your head slightly to the left"

    def test_extra_poses_reuse_last_instruction(self):
        session = EnrollmentSession(required=5)
        for _ in range(4):
            session.add(_result("x", 0.9))
        assert session.current_pose.name == "right"

    def test_add_after_complete_raises(self):
        session = EnrollmentSession(required=1)
        session.add(_result("center", 0.9))
        with pytest.raises(ValueError):
            session.add(_result("left", 0.9))

    def test_reset(self):
        session = EnrollmentSession(required=2)
        session.add(_result("center", 0.9))
        session.reset()
        assert session.pose_index == 0
        assert session.best() is None

    def test_required_is_at_least_one(self):
        assert EnrollmentSession(required=0).required == 1
