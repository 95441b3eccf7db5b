"""Capture service lifecycle on a (fake) webcam source."""

import time

import pytest

from app.models.capture_service import CaptureService, SessionNotActiveError
from conftest import FakeProvider, StubDetector, build_detection
from core.capture.config import CaptureConfig
from core.errors import DuplicateFaceError
from services.face_detector import FaceModelService

ENROLLED = [0.05] * 128


def _service(provider, **config):
    model_service = FaceModelService(backend=StubDetector(detection=build_detection()), warmup=False)
    model_service.load()
    return CaptureService(
        model_service,
        capture_config=CaptureConfig(detection_interval_ms=10, **config),
        camera_provider=provider,
    )


def _wait(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def provider():
    return FakeProvider()


class TestCameraSession:
    def test_completion_releases_camera(self, provider):
        service = _service(provider, auto_capture_delay_ms=0)
        service.start_session(mode='attendance', source='camera')

        assert _wait(lambda: not service.get_status()['loop_running'])
        assert service.get_state().phase == 'complete'
        assert provider.capture.released
        assert service.get_status()['camera']['opened'] is False
        service.cleanup()

    def test_resume_after_completion_keeps_camera_closed(self, provider):
        service = _service(provider, auto_capture_delay_ms=0)
        service.start_session(mode='attendance', source='camera')
        assert _wait(lambda: not service.get_status()['loop_running'])

        with pytest.raises(SessionNotActiveError) as excinfo:
            service.resume()

        assert excinfo.value.code == 'not_resumable'
        assert provider.opened == 1
        assert provider.capture.released
        status = service.get_status()
        assert status['phase'] == 'complete'
        assert status['loop_running'] is False
        service.cleanup()

    def test_resume_after_duplicate_restarts_loop(self, provider):
        service = _service(provider, auto_capture_delay_ms=60000)
        service.start_session(mode='enrollment', source='camera', existing_descriptors=[ENROLLED])
        assert _wait(lambda: service.get_state().phase == 'holding_good_conditions')

        with pytest.raises(DuplicateFaceError):
            service.capture()
        assert _wait(lambda: not service.get_status()['loop_running'])
        assert service.get_state().phase == 'idle'
        # a duplicate pauses detection but keeps the device
        assert not provider.capture.released

        state = service.resume()
        assert state.is_detecting
        assert service.get_status()['loop_running'] is True
        assert provider.opened == 1

        service.stop_session()
        assert provider.capture.released
        service.cleanup()
