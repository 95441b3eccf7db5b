"""Tests for the background detection loop."""

import time

from conftest import StubDetector, build_detection, build_frame
from core.capture.config import CaptureConfig
from core.capture.loop import DetectionLoop
from core.capture.orchestrator import CaptureOrchestrator, CapturePhase
from core.capture.types import CaptureMode
from core.errors import CaptureFailure
from core.vision.pipeline import FrameBuffer, FrameSampler


class SlowDetector(StubDetector):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def detect(self, frame):
        time.sleep(self.delay)
        return super().detect(frame)


class FlakyDetector(StubDetector):
    """Raises a backend error on the first call, then detects normally."""

    def detect(self, frame):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("Unsupported image type, must be 8bit gray or RGB image.")
        return self.detection


class BrokenSource:
    def read(self):
        raise OSError("device vanished")


def _buffered_sampler():
    buffer = FrameBuffer()
    buffer.push(build_frame().bgr)
    return FrameSampler(buffer, source_name="push")


def _wait_until_stopped(loop, timeout=2.0):
    deadline = time.monotonic() + timeout
    while loop.is_running() and time.monotonic() < deadline:
        time.sleep(0.02)


class TestDetectionLoop:
    def test_overrunning_cycles_drop_ticks(self):
        orchestrator = CaptureOrchestrator(SlowDetector(0.25), sampler=_buffered_sampler())
        orchestrator.start()
        loop = DetectionLoop(orchestrator, interval_ms=100)
        loop.start()
        time.sleep(0.6)
        loop.stop()

        assert loop.ticks >= 1
        assert loop.skipped_ticks >= 2 * loop.ticks
        assert not loop.is_running()

    def test_exits_when_capture_completes(self):
        orchestrator = CaptureOrchestrator(
            StubDetector(detection=build_detection()),
            config=CaptureConfig(auto_capture_delay_ms=0),
            mode=CaptureMode.ATTENDANCE,
            sampler=_buffered_sampler(),
        )
        orchestrator.start()
        loop = DetectionLoop(orchestrator, interval_ms=10)
        loop.start()
        _wait_until_stopped(loop)

        assert not loop.is_running()
        assert orchestrator.phase is CapturePhase.COMPLETE
        assert orchestrator.result is not None

    def test_does_not_start_twice(self):
        orchestrator = CaptureOrchestrator(StubDetector(), sampler=_buffered_sampler())
        orchestrator.start()
        loop = DetectionLoop(orchestrator, interval_ms=50)
        loop.start()
        first = loop._thread
        loop.start()
        assert loop._thread is first
        loop.stop()

    def test_stop_without_start(self):
        orchestrator = CaptureOrchestrator(StubDetector(), sampler=_buffered_sampler())
        loop = DetectionLoop(orchestrator)
        loop.stop()
        assert not loop.is_running()

    def test_detector_error_does_not_end_session(self):
        errors = []
        orchestrator = CaptureOrchestrator(
            FlakyDetector(detection=build_detection()),
            config=CaptureConfig(auto_capture_delay_ms=0),
            mode=CaptureMode.ATTENDANCE,
            sampler=_buffered_sampler(),
            on_error=errors.append,
        )
        orchestrator.start()
        loop = DetectionLoop(orchestrator, interval_ms=20)
        loop.start()
        _wait_until_stopped(loop)

        assert orchestrator.failed_cycles == 1
        assert orchestrator.phase is CapturePhase.COMPLETE
        assert errors == []

    def test_unexpected_sampler_error_fails_session(self):
        errors = []
        orchestrator = CaptureOrchestrator(
            StubDetector(detection=build_detection()),
            sampler=FrameSampler(BrokenSource()),
            on_error=errors.append,
        )
        orchestrator.start()
        loop = DetectionLoop(orchestrator, interval_ms=20)
        loop.start()
        _wait_until_stopped(loop)

        assert not loop.is_running()
        assert orchestrator.phase is CapturePhase.FAILED
        assert not orchestrator.is_detecting
        assert len(errors) == 1
        assert isinstance(errors[0], CaptureFailure)
        assert "device vanished" in str(errors[0])
