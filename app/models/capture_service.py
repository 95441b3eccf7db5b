"""
Capture Service - owns the capture session for the HTTP layer
Composes camera/push frame sources, the orchestrator and the detection loop
"""
import threading
from typing import Any, Dict, Iterable, Optional

from core.capture.config import CaptureConfig
from core.capture.loop import DetectionLoop
from core.capture.orchestrator import CaptureOrchestrator, CapturePhase
from core.capture.types import CaptureMode, CaptureResult, DetectionState
from core.errors import CameraAccessError, CaptureError
from core.vision.camera_manager import CameraProvider, CameraSettings
from core.vision.pipeline import FrameBuffer, FrameSampler, decode_image_payload
from core.vision.state import SharedCamera
from logging_config import face_capture_logger

SOURCE_CAMERA = 'camera'
SOURCE_PUSH = 'push'


class SessionNotActiveError(CaptureError):
    """No capture session has been started."""

    code = 'no_session'


class CaptureService:
    """Service managing one capture session at a time"""

    def __init__(
        self,
        model_service,
        capture_config: Optional[CaptureConfig] = None,
        camera_settings: Optional[CameraSettings] = None,
        camera_provider: Optional[CameraProvider] = None,
        broadcaster=None,
        logger=None,
    ):
        self.model_service = model_service
        self.capture_config = capture_config or CaptureConfig()
        self.camera_settings = camera_settings or CameraSettings()
        self.camera_provider = camera_provider
        self.broadcaster = broadcaster
        self.logger = logger

        self._lock = threading.RLock()
        self.camera: Optional[SharedCamera] = None
        self.orchestrator: Optional[CaptureOrchestrator] = None
        self.loop: Optional[DetectionLoop] = None
        self.frame_buffer: Optional[FrameBuffer] = None
        self.source: Optional[str] = None
        self._last_broadcast_key = None

    # ------------------------------------------------------------------
    # Camera
    # ------------------------------------------------------------------
    def get_or_create_camera(self) -> SharedCamera:
        if self.camera is None:
            self.camera = SharedCamera(
                self.camera_settings,
                provider=self.camera_provider,
                on_ready=self._on_camera_ready,
                on_error=self._on_camera_error,
                logger=self.logger,
            )
        return self.camera

    def _on_camera_ready(self, width: int, height: int):
        if self.logger:
            self.logger.info("[Camera] ✅ Camera ready %sx%s", width, height)
        self._broadcast('broadcast_camera_status', enabled=True, ready=True)

    def _on_camera_error(self, exc: CameraAccessError):
        self._broadcast('broadcast_camera_status', enabled=True, ready=False)

    def release_camera_capture(self):
        camera = self.camera
        if camera is None:
            return
        camera.release()
        self._broadcast('broadcast_camera_status', enabled=False, ready=False)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def start_session(
        self,
        mode: str = 'enrollment',
        required_poses: Optional[int] = None,
        existing_descriptors: Optional[Iterable[Any]] = None,
        source: str = SOURCE_CAMERA,
    ) -> DetectionState:
        """Start a new session, replacing (and releasing) any current one.

        Raises CameraAccessError when the camera source cannot be opened and
        ModelLoadError when the face models failed to load.
        """
        capture_mode = CaptureMode(mode)
        if source not in (SOURCE_CAMERA, SOURCE_PUSH):
            raise ValueError(f"Unknown frame source: {source}")
        model_error = self.model_service.error
        if model_error is not None:
            raise model_error

        with self._lock:
            self._stop_locked()

            if source == SOURCE_CAMERA:
                sampler = self.get_or_create_camera().acquire()
                self.frame_buffer = None
            else:
                self.frame_buffer = FrameBuffer()
                sampler = FrameSampler(self.frame_buffer, source_name=SOURCE_PUSH)

            orchestrator = CaptureOrchestrator(
                self.model_service,
                config=self.capture_config,
                mode=capture_mode,
                required_poses=required_poses,
                existing_descriptors=existing_descriptors,
                on_capture_complete=self._on_capture_complete,
                on_error=self._on_error,
                on_pose_captured=self._on_pose_captured,
                on_state_change=self._on_state_change,
                sampler=sampler,
            )
            self.orchestrator = orchestrator
            self.source = source
            self._last_broadcast_key = None
            orchestrator.start()

            if source == SOURCE_CAMERA:
                self.loop = DetectionLoop(orchestrator, interval_ms=self.capture_config.detection_interval_ms)
                self.loop.start()

            state = orchestrator.snapshot()

        face_capture_logger.log_session_started(capture_mode.value, state.required, source)
        self._broadcast('broadcast_capture_event', 'capture_started', state.to_dict())
        return state

    def stop_session(self) -> bool:
        with self._lock:
            had_session = self.orchestrator is not None
            self._stop_locked()
        if had_session:
            self._broadcast('broadcast_capture_event', 'capture_stopped', {})
        return had_session

    def _stop_locked(self):
        if self.loop is not None:
            self.loop.stop()
            self.loop = None
        if self.orchestrator is not None:
            self.orchestrator.stop()
            self.orchestrator = None
        if self.source == SOURCE_CAMERA:
            self.release_camera_capture()
        self.frame_buffer = None
        self.source = None

    def _require_session(self) -> CaptureOrchestrator:
        orchestrator = self.orchestrator
        if orchestrator is None:
            raise SessionNotActiveError("No capture session is active")
        return orchestrator

    def reset(self) -> DetectionState:
        with self._lock:
            orchestrator = self._require_session()
            orchestrator.reset()
            if self.source == SOURCE_CAMERA and orchestrator.is_detecting:
                if self.loop is None or not self.loop.is_running():
                    self.loop = DetectionLoop(orchestrator, interval_ms=self.capture_config.detection_interval_ms)
                    self.loop.start()
            return orchestrator.snapshot()

    def resume(self) -> DetectionState:
        """Restart detection after a pause (e.g. duplicate face rejection).

        Completed and failed sessions cannot be resumed; start a new one.
        """
        with self._lock:
            orchestrator = self._require_session()
            phase = orchestrator.phase
            if phase in (CapturePhase.COMPLETE, CapturePhase.FAILED):
                raise SessionNotActiveError(
                    f"Session is {phase.value} and cannot be resumed", code='not_resumable'
                )
            needs_loop = self.source == SOURCE_CAMERA and (self.loop is None or not self.loop.is_running())
            if needs_loop:
                self.get_or_create_camera().acquire()
            orchestrator.start()
            if needs_loop:
                self.loop = DetectionLoop(orchestrator, interval_ms=self.capture_config.detection_interval_ms)
                self.loop.start()
            return orchestrator.snapshot()

    # ------------------------------------------------------------------
    # Frames and capture
    # ------------------------------------------------------------------
    def push_frame(self, image_data: str) -> Dict[str, Any]:
        """Decode one pushed frame and run a detection cycle on it."""
        orchestrator = self._require_session()
        buffer = self.frame_buffer
        if buffer is None:
            raise SessionNotActiveError("Session is not accepting pushed frames", code='wrong_source')
        buffer.push(decode_image_payload(image_data))
        processed = orchestrator.tick()
        return {
            'processed': processed,
            'state': orchestrator.snapshot().to_dict(),
        }

    def capture(self) -> Optional[CaptureResult]:
        return self._require_session().capture()

    def get_state(self) -> Optional[DetectionState]:
        orchestrator = self.orchestrator
        return orchestrator.snapshot() if orchestrator else None

    def get_result(self) -> Optional[CaptureResult]:
        orchestrator = self.orchestrator
        return orchestrator.result if orchestrator else None

    def get_status(self) -> dict:
        camera = self.camera
        orchestrator = self.orchestrator
        return {
            'session_active': orchestrator is not None,
            'source': self.source,
            'phase': orchestrator.phase.value if orchestrator else None,
            'camera': camera.status() if camera else {'enabled': False, 'opened': False},
            'loop_running': bool(self.loop and self.loop.is_running()),
            'skipped_ticks': self.loop.skipped_ticks if self.loop else 0,
        }

    def cleanup(self):
        with self._lock:
            self._stop_locked()
        self.camera = None

    # ------------------------------------------------------------------
    # Orchestrator callbacks
    # ------------------------------------------------------------------
    def _on_capture_complete(self, result: CaptureResult):
        orchestrator = self.orchestrator
        mode = orchestrator.mode.value if orchestrator else 'unknown'
        face_capture_logger.log_capture_complete(mode, result.pose, result.quality.score, result.confidence)
        if self.source == SOURCE_CAMERA:
            self.release_camera_capture()
        self._broadcast('broadcast_capture_event', 'capture_complete', result.to_dict(include_image=False))

    def _on_pose_captured(self, result: CaptureResult, index: int):
        orchestrator = self.orchestrator
        required = orchestrator.snapshot().required if orchestrator else index
        face_capture_logger.log_pose_captured(result.pose, index, required, result.quality.score)
        self._broadcast('broadcast_capture_event', 'pose_captured', {
            'pose': result.pose,
            'index': index,
            'required': required,
            'quality': result.quality.to_dict(),
        })

    def _on_error(self, exc: CaptureError):
        face_capture_logger.log_capture_error(exc.code, exc.message)
        if exc.fatal and self.source == SOURCE_CAMERA:
            self.release_camera_capture()
        self._broadcast('broadcast_capture_event', 'capture_error', exc.to_dict())

    def _on_state_change(self, state: DetectionState):
        # Only coarse changes are pushed; per-frame numbers are polled.
        key = (state.phase, state.face_detected, state.captured, state.environment)
        if key == self._last_broadcast_key:
            return
        self._last_broadcast_key = key
        self._broadcast('broadcast_capture_event', 'capture_state', state.to_dict())

    def _broadcast(self, method: str, *args, **kwargs):
        broadcaster = self.broadcaster
        if broadcaster is None:
            return
        getattr(broadcaster, method)(*args, **kwargs)
