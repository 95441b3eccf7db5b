"""Shared fixtures: synthetic frames, detections, a stub detector and a fake webcam."""

from datetime import datetime

import cv2
import numpy as np
import pytest

from core.capture.types import BoundingBox, FaceDetection, FaceLandmarks
from core.vision.pipeline import FrameSample


class StubDetector:
    """Returns a fixed detection (or raises) and counts calls."""

    def __init__(self, detection=None, error=None):
        self.detection = detection
        self.error = error
        self.calls = 0
        self.loaded_from = None

    def load_models(self, model_location=None):
        self.loaded_from = model_location

    def detect(self, frame):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.detection


class FakeCapture:
    def __init__(self, frames=True, width=640, height=480):
        self.frames = frames
        self.width = width
        self.height = height
        self.released = False
        self.reads = 0
        self.settings = {}

    def isOpened(self):
        return not self.released

    def set(self, prop, value):
        self.settings[prop] = value
        return True

    def get(self, prop):
        return {
            cv2.CAP_PROP_FRAME_WIDTH: self.width,
            cv2.CAP_PROP_FRAME_HEIGHT: self.height,
            cv2.CAP_PROP_FPS: 30.0,
        }.get(prop, 0)

    def read(self):
        self.reads += 1
        if not self.frames:
            return False, None
        return True, np.full((self.height, self.width, 3), 120, dtype=np.uint8)

    def release(self):
        self.released = True


class FakeProvider:
    def __init__(self, capture=None, error=None):
        self.capture = capture or FakeCapture()
        self.error = error
        self.opened = 0

    def open(self, index):
        if self.error is not None:
            raise self.error
        self.opened += 1
        self.capture.released = False
        return self.capture


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


def build_frame(brightness=150, height=480, width=640):
    bgr = np.full((height, width, 3), brightness, dtype=np.uint8)
    return FrameSample(frame_id="test", timestamp=datetime.now(), bgr=bgr)


def build_detection(size=200.0, x=None, y=None, nose_dx=0.0, nose_dy=0.2,
                    confidence=0.9, descriptor=None, frame_size=(640, 480)):
    """Face box of ``size`` with eyes at 40% height and the nose below the eye centre.

    ``nose_dx``/``nose_dy`` are fractions of the face size; the defaults give
    yaw 0 and pitch ~11.3 degrees.
    """
    if x is None:
        x = frame_size[0] / 2.0 - size / 2.0
    if y is None:
        y = frame_size[1] / 2.0 - size / 2.0
    eye_y = y + 0.4 * size
    left_eye = (x + 0.3 * size, eye_y)
    right_eye = (x + 0.7 * size, eye_y)
    nose = (x + 0.5 * size + nose_dx * size, eye_y + nose_dy * size)
    if descriptor is None:
        descriptor = np.full(128, 0.05, dtype="float32")
    return FaceDetection(
        box=BoundingBox(x=x, y=y, width=size, height=size),
        landmarks=FaceLandmarks(left_eye=left_eye, right_eye=right_eye, nose_tip=nose),
        descriptor=np.asarray(descriptor, dtype="float32"),
        confidence=confidence,
    )


@pytest.fixture
def make_frame():
    return build_frame


@pytest.fixture
def make_detection():
    return build_detection


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def good_detector():
    return StubDetector(detection=build_detection())
