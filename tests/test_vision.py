"""Tests for camera lifecycle, frame buffers and image payloads."""

from datetime import datetime

import numpy as np
import pytest

from conftest import FakeCapture, FakeProvider
from core.errors import CameraAccessError, FrameReadError
from core.vision.camera_manager import CameraManager, CameraSettings
from core.vision.pipeline import (
    FrameBuffer,
    FrameSampler,
    decode_image_payload,
    encode_jpeg_data_url,
)
from core.vision.state import SharedCamera


class TestCameraManager:
    def test_open_reports_granted_size(self):
        sizes = []
        manager = CameraManager(
            CameraSettings(width=1280, height=720, warmup_frames=0),
            provider=FakeProvider(),
            on_ready=lambda w, h: sizes.append((w, h)),
        )
        manager.open()
        # the fake driver ignores the requested resolution
        assert sizes == [(640, 480)]
        assert manager.info.fps == 30.0
        assert manager.is_open()

    def test_open_is_idempotent(self):
        provider = FakeProvider()
        manager = CameraManager(CameraSettings(warmup_frames=0), provider=provider)
        manager.open()
        manager.open()
        assert provider.opened == 1

    def test_warm_up_discards_frames(self):
        provider = FakeProvider()
        manager = CameraManager(CameraSettings(warmup_frames=2, warmup_delay=0.0), provider=provider)
        manager.open()
        assert provider.capture.reads == 2

    def test_context_manager_releases(self):
        provider = FakeProvider()
        with CameraManager(CameraSettings(warmup_frames=0), provider=provider) as manager:
            assert manager.read().shape == (480, 640, 3)
        assert provider.capture.released
        assert not manager.is_open()

    def test_access_failure_is_reported(self):
        errors = []
        manager = CameraManager(
            CameraSettings(warmup_frames=0),
            provider=FakeProvider(error=CameraAccessError("Permission denied")),
            on_error=errors.append,
        )
        with pytest.raises(CameraAccessError):
            manager.read()
        assert len(errors) == 1

    def test_single_read_failure(self):
        manager = CameraManager(CameraSettings(warmup_frames=0), provider=FakeProvider(FakeCapture(frames=False)))
        with pytest.raises(FrameReadError):
            manager.read()

    def test_repeated_read_failures_mean_device_lost(self):
        errors = []
        provider = FakeProvider(FakeCapture(frames=False))
        manager = CameraManager(
            CameraSettings(warmup_frames=0, max_read_failures=3), provider=provider, on_error=errors.append
        )
        for _ in range(2):
            with pytest.raises(FrameReadError):
                manager.read()
        with pytest.raises(CameraAccessError):
            manager.read()
        assert errors and errors[0].fatal
        assert provider.capture.released

    def test_disabled_camera_does_not_read(self):
        manager = CameraManager(CameraSettings(warmup_frames=0), provider=FakeProvider())
        manager.set_enabled(False)
        with pytest.raises(FrameReadError):
            manager.read()


class TestSharedCamera:
    def test_acquire_and_status(self):
        camera = SharedCamera(CameraSettings(warmup_frames=0), provider=FakeProvider())
        sample = camera.next_frame()
        assert sample.frame_id == "frame-1"
        assert sample.metadata["source"] == "camera"
        status = camera.status()
        assert (status["opened"], status["width"], status["height"]) == (True, 640, 480)

        camera.release()
        assert camera.status()["opened"] is False

    def test_release_restarts_frame_numbering(self):
        camera = SharedCamera(CameraSettings(warmup_frames=0), provider=FakeProvider())
        camera.next_frame()
        camera.release()
        assert camera.next_frame().frame_id == "frame-1"
        assert camera.acquisitions == 2

    def test_disabled_camera(self):
        camera = SharedCamera(CameraSettings(warmup_frames=0), provider=FakeProvider())
        camera.set_enabled(False)
        with pytest.raises(CameraAccessError):
            camera.acquire()


class TestFrameBuffer:
    def test_latest_frame_wins(self):
        buffer = FrameBuffer()
        first = np.zeros((2, 2, 3), dtype=np.uint8)
        second = np.ones((2, 2, 3), dtype=np.uint8)
        buffer.push(first)
        buffer.push(second)
        assert buffer.read() is second

    def test_empty_and_cleared(self):
        buffer = FrameBuffer()
        with pytest.raises(FrameReadError):
            buffer.read()
        buffer.push(np.zeros((2, 2, 3), dtype=np.uint8))
        buffer.clear()
        with pytest.raises(FrameReadError):
            buffer.read()

    def test_rejects_non_bgr_frames(self):
        with pytest.raises(FrameReadError):
            FrameBuffer().push(np.zeros((2, 2), dtype=np.uint8))

    def test_sampler_numbers_frames(self):
        buffer = FrameBuffer()
        buffer.push(np.zeros((2, 2, 3), dtype=np.uint8))
        sampler = FrameSampler(buffer, source_name="push")
        assert [sampler.sample().frame_id for _ in range(2)] == ["frame-1", "frame-2"]

    def test_samples_carry_local_timestamps(self):
        buffer = FrameBuffer()
        buffer.push(np.zeros((2, 2, 3), dtype=np.uint8))
        sampler = FrameSampler(buffer)
        before = datetime.now()
        sample = sampler.sample()
        pushed = sampler.wrap(np.zeros((2, 2, 3), dtype=np.uint8))

        for stamped in (sample, pushed):
            assert stamped.timestamp.tzinfo is None
            assert before <= stamped.timestamp <= datetime.now()


class TestImagePayloads:
    def test_data_url_decodes_to_same_shape(self):
        frame = np.full((48, 64, 3), 90, dtype=np.uint8)
        url = encode_jpeg_data_url(frame)
        assert url.startswith("data:image/jpeg;base64,")
        assert decode_image_payload(url).shape == (48, 64, 3)

    @pytest.mark.parametrize("payload", ["", "data:image/jpeg;base64,bm90IGFuIGltYWdl"])
    def test_invalid_payload(self, payload):
        with pytest.raises(FrameReadError):
            decode_image_payload(payload)
