"""HTTP API tests with a stub detector and pushed frames."""

import numpy as np
import pytest

from app import create_app
from app import globals as app_globals
from conftest import StubDetector, build_detection
from core.vision.pipeline import encode_jpeg_data_url
from services.face_detector import FaceModelService

ENROLLED = [0.05] * 128


@pytest.fixture
def make_client(tmp_path):
    apps = []

    def _create(**overrides):
        settings = {
            'TESTING': True,
            'LOG_DIR': str(tmp_path / 'logs'),
            'LOAD_MODELS_ON_STARTUP': False,
            'AUTO_CAPTURE_DELAY_MS': 0,
        }
        settings.update(overrides)
        model_service = FaceModelService(backend=StubDetector(detection=build_detection()), warmup=False)
        model_service.load()
        app = create_app(settings, model_service=model_service)
        apps.append(app)
        return app.test_client()

    yield _create
    if app_globals.capture_service is not None:
        app_globals.capture_service.cleanup()


@pytest.fixture
def image_data():
    return encode_jpeg_data_url(np.full((480, 640, 3), 150, dtype=np.uint8))


def _start(client, **body):
    body.setdefault('source', 'push')
    return client.post('/api/capture/session', json=body)


class TestAttendanceFlow:
    def test_push_frames_until_capture(self, make_client, image_data):
        client = make_client()
        response = _start(client, mode='attendance')
        assert response.status_code == 201
        assert response.get_json()['state']['required'] == 1

        first = client.post('/api/capture/session/frame', json={'image': image_data}).get_json()
        assert first['processed'] is True
        assert first['state']['phase'] == 'holding_good_conditions'

        second = client.post('/api/capture/session/frame', json={'image': image_data}).get_json()
        assert second['state']['phase'] == 'complete'

        result = client.get('/api/capture/result')
        assert result.status_code == 200
        payload = result.get_json()['result']
        assert payload['pose'] == 'center'
        assert payload['image'].startswith('data:image/jpeg;base64,')
        assert len(payload['descriptor']) == 128

    def test_verify_completed_capture(self, make_client, image_data):
        client = make_client()
        _start(client, mode='attendance')
        for _ in range(2):
            client.post('/api/capture/session/frame', json={'image': image_data})

        response = client.post('/api/attendance/face-verify', json={'stored_descriptors': [ENROLLED]})
        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['is_match'] is True
        assert data['confidence'] == pytest.approx(1.0)

    def test_verify_uploaded_image(self, make_client, image_data):
        client = make_client()
        response = client.post('/api/attendance/face-verify', json={
            'stored_descriptors': [[0.9] * 128],
            'face_image_data': image_data,
        })
        data = response.get_json()['data']
        assert data['is_match'] is False
        assert data['reason'] == 'Face does not match enrolled profile'

    def test_verify_requires_descriptors(self, make_client):
        client = make_client()
        response = client.post('/api/attendance/face-verify', json={})
        assert response.status_code == 400


class TestEnrollmentFlow:
    def test_duplicate_face_is_rejected(self, make_client, image_data):
        client = make_client(AUTO_CAPTURE_DELAY_MS=60000)
        _start(client, mode='enrollment', existing_descriptors=[ENROLLED])
        client.post('/api/capture/session/frame', json={'image': image_data})

        response = client.post('/api/capture/session/capture')
        assert response.status_code == 409
        assert response.get_json()['code'] == 'duplicate_face'
        assert client.get('/api/capture/session').get_json()['state']['phase'] == 'idle'

        resumed = client.post('/api/capture/session/resume')
        assert resumed.get_json()['state']['phase'] == 'awaiting_good_conditions'

    def test_completed_session_is_not_resumable(self, make_client, image_data):
        client = make_client()
        _start(client, mode='attendance')
        for _ in range(2):
            client.post('/api/capture/session/frame', json={'image': image_data})

        response = client.post('/api/capture/session/resume')
        assert response.status_code == 409
        assert response.get_json()['code'] == 'not_resumable'
        assert client.get('/api/capture/session').get_json()['state']['phase'] == 'complete'

    def test_manual_capture_advances_pose(self, make_client, image_data):
        client = make_client(AUTO_CAPTURE_DELAY_MS=60000)
        _start(client, mode='enrollment', required_poses=2)
        client.post('/api/capture/session/frame', json={'image': image_data})

        response = client.post('/api/capture/session/capture')
        assert response.status_code == 200
        body = response.get_json()
        assert body['capture']['pose'] == 'center'
        assert body['state']['current_pose'] == 'left'
        assert client.get('/api/capture/result').status_code == 404

    def test_reset_restarts_sequence(self, make_client, image_data):
        client = make_client(AUTO_CAPTURE_DELAY_MS=60000)
        _start(client, mode='enrollment')
        client.post('/api/capture/session/frame', json={'image': image_data})
        client.post('/api/capture/session/capture')

        state = client.post('/api/capture/session/reset').get_json()['state']
        assert state['captured'] == 0
        assert state['current_pose'] == 'center'


class TestSessionErrors:
    def test_no_session(self, make_client):
        client = make_client()
        assert client.get('/api/capture/session').status_code == 404
        response = client.post('/api/capture/session/capture')
        assert response.status_code == 409
        assert response.get_json()['code'] == 'no_session'

    @pytest.mark.parametrize('body', [
        {'mode': 'selfie'},
        {'mode': 'enrollment', 'source': 'scanner'},
        {'mode': 'enrollment', 'required_poses': 0},
        {'mode': 'enrollment', 'existing_descriptors': 'abc'},
    ])
    def test_bad_session_request(self, make_client, body):
        client = make_client()
        assert client.post('/api/capture/session', json=body).status_code == 400

    def test_undecodable_frame(self, make_client):
        client = make_client()
        _start(client, mode='attendance')
        response = client.post('/api/capture/session/frame', json={'image': 'bm90IGFuIGltYWdl'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'frame_read'

    def test_stop_session(self, make_client):
        client = make_client()
        _start(client, mode='attendance')
        assert client.delete('/api/capture/session').get_json()['stopped'] is True
        assert client.get('/api/capture/session').status_code == 404


class TestHealth:
    def test_health(self, make_client):
        client = make_client()
        response = client.get('/api/system/health')
        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['overall'] == 'healthy'
        assert [check['service'] for check in data['checks']] == ['Face Models', 'Capture Session', 'Event Stream']


class TestLogging:
    def test_log_files_are_created(self, make_client, tmp_path):
        client = make_client()
        _start(client, mode='attendance')
        for name in ('capture_system.log', 'errors.log', 'capture_events.log'):
            assert (tmp_path / 'logs' / name).exists()
