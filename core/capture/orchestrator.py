"""Capture state machine: detection cycles, debounced auto-capture and pose sequencing."""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

import numpy as np

from core.errors import (
    CameraAccessError,
    CaptureError,
    CaptureFailure,
    DuplicateFaceError,
    FrameReadError,
    ModelLoadError,
    ModelNotReadyError,
)
from core.vision.pipeline import FrameSample, FrameSampler, encode_jpeg_data_url
from .config import CaptureConfig
from .dedup import DeduplicationChecker
from .environment import EnvironmentAssessor
from .quality import QualityScorer
from .session import EnrollmentSession
from .types import (
    CaptureMode,
    CaptureResult,
    DetectionState,
    Distance,
    EnvironmentCheck,
    FaceDetection,
    FaceQuality,
    Lighting,
    as_descriptor,
    as_descriptor_list,
)

Clock = Callable[[], float]
CompleteCallback = Callable[[CaptureResult], None]
ErrorCallback = Callable[[CaptureError], None]
PoseCallback = Callable[[CaptureResult, int], None]
StateCallback = Callable[[DetectionState], None]


class CapturePhase(str, Enum):
    IDLE = "idle"
    AWAITING = "awaiting_good_conditions"
    HOLDING = "holding_good_conditions"
    AUTO_CAPTURED = "auto_captured"
    COMPLETE = "complete"
    FAILED = "failed"


class CaptureEvent(str, Enum):
    START = "start"
    STOP = "stop"
    CONDITIONS_MET = "conditions_met"
    CONDITIONS_LOST = "conditions_lost"
    CAPTURED = "captured"
    NEXT_POSE = "next_pose"
    COMPLETED = "completed"
    CAPTURE_FAILED = "capture_failed"
    DUPLICATE = "duplicate"
    RESET = "reset"
    FATAL = "fatal"


DETECTING_PHASES = frozenset({CapturePhase.AWAITING, CapturePhase.HOLDING, CapturePhase.AUTO_CAPTURED})

_TRANSITIONS = {
    (CapturePhase.IDLE, CaptureEvent.START): CapturePhase.AWAITING,
    (CapturePhase.AWAITING, CaptureEvent.CONDITIONS_MET): CapturePhase.HOLDING,
    (CapturePhase.HOLDING, CaptureEvent.CONDITIONS_LOST): CapturePhase.AWAITING,
    (CapturePhase.AWAITING, CaptureEvent.CAPTURED): CapturePhase.AUTO_CAPTURED,
    (CapturePhase.HOLDING, CaptureEvent.CAPTURED): CapturePhase.AUTO_CAPTURED,
    (CapturePhase.AWAITING, CaptureEvent.CAPTURE_FAILED): CapturePhase.AWAITING,
    (CapturePhase.HOLDING, CaptureEvent.CAPTURE_FAILED): CapturePhase.AWAITING,
    (CapturePhase.AUTO_CAPTURED, CaptureEvent.NEXT_POSE): CapturePhase.AWAITING,
    (CapturePhase.AUTO_CAPTURED, CaptureEvent.COMPLETED): CapturePhase.COMPLETE,
}


def transition(phase: CapturePhase, event: CaptureEvent) -> CapturePhase:
    """Next phase for ``event``; events that do not apply leave the phase unchanged."""
    if event is CaptureEvent.FATAL:
        return CapturePhase.FAILED
    if event is CaptureEvent.RESET:
        # Reset restarts the pose sequence without changing whether detection runs.
        return CapturePhase.AWAITING if phase in DETECTING_PHASES else CapturePhase.IDLE
    if event in (CaptureEvent.STOP, CaptureEvent.DUPLICATE):
        return CapturePhase.IDLE if phase in DETECTING_PHASES else phase
    return _TRANSITIONS.get((phase, event), phase)


class AutoCaptureTimer:
    """Debounce timer: expires once conditions have held for ``delay`` seconds."""

    def __init__(self, delay_ms: int = 2000):
        self.delay = max(0, int(delay_ms)) / 1000.0
        self.armed_at: Optional[float] = None

    @property
    def armed(self) -> bool:
        return self.armed_at is not None

    def arm(self, now: float) -> None:
        self.armed_at = now

    def cancel(self) -> None:
        self.armed_at = None

    def elapsed(self, now: float) -> float:
        if self.armed_at is None:
            return 0.0
        return max(0.0, now - self.armed_at)

    def expired(self, now: float) -> bool:
        return self.armed_at is not None and self.elapsed(now) >= self.delay

    def progress(self, now: float) -> float:
        if self.armed_at is None:
            return 0.0
        if self.delay <= 0:
            return 1.0
        return min(1.0, self.elapsed(now) / self.delay)


FrameInput = Union[FrameSample, np.ndarray]


class CaptureOrchestrator:
    """Drives one capture session for either enrollment or attendance.

    Frames come either from ``sampler`` (``tick()``) or from the caller
    (``process_frame()``). Both paths share a non-blocking in-flight lock, so a
    cycle that arrives while the previous one is still detecting is skipped and
    counted in ``skipped_cycles``. State is guarded by a re-entrant lock and
    callbacks run after it is released.

    ``on_error`` receives fatal errors (camera, model load) and errors from the
    auto-capture path. A manual ``capture()`` raises instead.
    """

    def __init__(
        self,
        detector: Any,
        *,
        config: Optional[CaptureConfig] = None,
        mode: CaptureMode = CaptureMode.ENROLLMENT,
        required_poses: Optional[int] = None,
        existing_descriptors: Optional[Iterable[Any]] = None,
        on_capture_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_pose_captured: Optional[PoseCallback] = None,
        on_state_change: Optional[StateCallback] = None,
        sampler: Optional[FrameSampler] = None,
        clock: Clock = time.monotonic,
        assessor: Optional[EnvironmentAssessor] = None,
        scorer: Optional[QualityScorer] = None,
        dedup: Optional[DeduplicationChecker] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or CaptureConfig()
        self.mode = CaptureMode(mode)
        self._detector = detector
        self._sampler = sampler
        self._push_sampler = FrameSampler(source=None, source_name="push")
        self._clock = clock
        self._assessor = assessor or EnvironmentAssessor(self.config)
        self._scorer = scorer or QualityScorer(self.config)
        self._dedup = dedup or DeduplicationChecker(self.config.duplicate_distance_threshold)
        self._logger = logger or logging.getLogger(__name__)

        self._on_capture_complete = on_capture_complete
        self._on_error = on_error
        self._on_pose_captured = on_pose_captured
        self._on_state_change = on_state_change

        if self.mode is CaptureMode.ATTENDANCE:
            required = 1
        else:
            required = required_poses if required_poses is not None else self.config.required_poses
        self._session = EnrollmentSession(required=required)
        self._existing: List[np.ndarray] = (
            as_descriptor_list(list(existing_descriptors)) if existing_descriptors else []
        )

        self._lock = threading.RLock()
        self._inflight = threading.Lock()
        self._timer = AutoCaptureTimer(self.config.auto_capture_delay_ms)
        self._phase = CapturePhase.IDLE
        self._environment = EnvironmentCheck()
        self._detection: Optional[FaceDetection] = None
        self._quality: Optional[FaceQuality] = None
        self._frame: Optional[FrameSample] = None
        self._result: Optional[CaptureResult] = None
        self._last_error: Optional[CaptureError] = None
        self.skipped_cycles = 0
        self.processed_cycles = 0
        self.failed_cycles = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def phase(self) -> CapturePhase:
        with self._lock:
            return self._phase

    @property
    def is_detecting(self) -> bool:
        with self._lock:
            return self._phase in DETECTING_PHASES

    @property
    def result(self) -> Optional[CaptureResult]:
        with self._lock:
            return self._result

    @property
    def captures(self) -> List[CaptureResult]:
        with self._lock:
            return list(self._session.captures)

    @property
    def last_error(self) -> Optional[CaptureError]:
        with self._lock:
            return self._last_error

    @property
    def latest_frame(self) -> Optional[FrameSample]:
        with self._lock:
            return self._frame

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            self._apply(CaptureEvent.START)
            self._logger.info("[Capture] Detection started (mode=%s, poses=%s)", self.mode.value, self._session.required)
            state = self._snapshot_locked(self._clock())
        self._notify_state(state)

    def stop(self) -> None:
        with self._lock:
            self._timer.cancel()
            self._apply(CaptureEvent.STOP)
            state = self._snapshot_locked(self._clock())
        self._notify_state(state)

    def reset(self) -> None:
        with self._lock:
            self._timer.cancel()
            self._session.reset()
            self._result = None
            self._last_error = None
            self._detection = None
            self._quality = None
            self._apply(CaptureEvent.RESET)
            self._logger.info("[Capture] Session reset")
            state = self._snapshot_locked(self._clock())
        self._notify_state(state)

    def fail(self, exc: CaptureError) -> None:
        """Enter the terminal failed phase and report ``exc`` through ``on_error``."""
        with self._lock:
            self._timer.cancel()
            self._last_error = exc
            self._apply(CaptureEvent.FATAL)
            self._logger.error("[Capture] Fatal error (%s): %s", exc.code, exc)
            state = self._snapshot_locked(self._clock())
        self._notify_error(exc)
        self._notify_state(state)

    # ------------------------------------------------------------------
    # Detection cycles
    # ------------------------------------------------------------------
    def tick(self, now: Optional[float] = None) -> bool:
        """Sample one frame from the sampler and process it."""
        if self._sampler is None:
            raise RuntimeError("tick() requires a frame sampler")
        if not self.is_detecting:
            return False
        if not self._inflight.acquire(blocking=False):
            self._count_skip()
            return False
        try:
            try:
                frame = self._sampler.sample()
            except CameraAccessError as exc:
                self.fail(exc)
                return False
            except FrameReadError as exc:
                self._logger.debug("[Capture] Frame skipped: %s", exc)
                return False
            return self._process_locked_cycle(frame, now)
        finally:
            self._inflight.release()

    def process_frame(self, frame: FrameInput, now: Optional[float] = None) -> bool:
        """Run one detection cycle on a caller-supplied frame.

        Returns False when the cycle was skipped (not detecting, previous cycle
        still in flight, models not ready, unreadable frame).
        """
        if not self.is_detecting:
            return False
        if not self._inflight.acquire(blocking=False):
            self._count_skip()
            return False
        try:
            if not isinstance(frame, FrameSample):
                frame = self._wrap(frame)
            return self._process_locked_cycle(frame, now)
        finally:
            self._inflight.release()

    def _wrap(self, frame: np.ndarray) -> FrameSample:
        return self._push_sampler.wrap(frame)

    def _count_skip(self) -> None:
        with self._lock:
            self.skipped_cycles += 1

    def _process_locked_cycle(self, frame: FrameSample, now: Optional[float]) -> bool:
        # Detection runs outside the state lock so snapshots stay responsive.
        environment = self._assessor.assess(frame)
        if environment is None:
            # Undecodable frame: keep the previous check and skip the cycle.
            return False
        quality = None
        distance = None
        try:
            detection = self._detector.detect(frame)
            if detection is not None:
                quality = self._scorer.score(detection, frame)
                distance = self._scorer.distance(detection, frame)
        except ModelNotReadyError:
            self._logger.debug("[Capture] Models not ready, cycle skipped")
            return False
        except ModelLoadError as exc:
            self.fail(exc)
            return False
        except FrameReadError as exc:
            self._logger.debug("[Capture] Frame skipped: %s", exc)
            return False
        except Exception:
            # A miss on one frame must not end the session; the next tick retries.
            self._logger.exception("[Capture] Detection failed on %s, cycle skipped", frame.frame_id)
            with self._lock:
                self.failed_cycles += 1
            return False

        now = self._clock() if now is None else now
        pending: List[Tuple[Callable[..., None], tuple]] = []
        with self._lock:
            if self._phase not in DETECTING_PHASES:
                return False
            self.processed_cycles += 1
            self._environment = environment
            if distance is not None:
                self._environment = self._environment.with_distance(distance)
            self._frame = frame
            self._detection = detection
            self._quality = quality

            if self._conditions_met_locked():
                if self._phase is CapturePhase.AWAITING:
                    self._apply(CaptureEvent.CONDITIONS_MET)
                    self._timer.arm(now)
                elif self._phase is CapturePhase.HOLDING and self._timer.expired(now):
                    self._logger.info("[Capture] Conditions held %.2fs, auto-capturing", self._timer.elapsed(now))
                    try:
                        pending.extend(self._capture_locked())
                    except (DuplicateFaceError, CaptureFailure) as exc:
                        pending.append((self._notify_error, (exc,)))
            elif self._phase is CapturePhase.HOLDING:
                self._apply(CaptureEvent.CONDITIONS_LOST)
                self._timer.cancel()
            state = self._snapshot_locked(now)

        self._dispatch(pending)
        self._notify_state(state)
        return True

    def _conditions_met_locked(self) -> bool:
        detection = self._detection
        quality = self._quality
        if detection is None or quality is None:
            return False
        return (
            detection.confidence > self.config.min_confidence
            and quality.score > self.config.min_quality_score
            and self._environment.lighting is Lighting.GOOD
            and self._environment.distance is Distance.GOOD
        )

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    def capture(self) -> Optional[CaptureResult]:
        """Manual capture of the current face.

        Returns None when no face is detected or its quality is below the
        gate; raises DuplicateFaceError or CaptureFailure.
        """
        pending: List[Tuple[Callable[..., None], tuple]] = []
        with self._lock:
            if self._phase not in (CapturePhase.AWAITING, CapturePhase.HOLDING):
                return None
            quality = self._quality
            if self._detection is None or quality is None or quality.score < self.config.min_quality_score:
                return None
            error: Optional[CaptureError] = None
            try:
                pending.extend(self._capture_locked())
            except (DuplicateFaceError, CaptureFailure) as exc:
                error = exc
            state = self._snapshot_locked(self._clock())
            captured = self._session.captures[-1] if error is None else None
        if error is not None:
            # Listeners still see the paused (duplicate) or re-armed phase.
            self._notify_state(state)
            raise error
        self._dispatch(pending)
        self._notify_state(state)
        return captured

    def _capture_locked(self) -> List[Tuple[Callable[..., None], tuple]]:
        """Build a CaptureResult from the latest detection and advance the session.

        Returns the callbacks to run once the lock is released.
        """
        detection = self._detection
        frame = self._frame
        quality = self._quality
        self._timer.cancel()
        try:
            if detection is None or frame is None or quality is None:
                raise CaptureFailure("No face available to capture")
            descriptor = as_descriptor(detection.descriptor)
            if descriptor.size == 0 or not np.all(np.isfinite(descriptor)):
                raise CaptureFailure("Face descriptor could not be extracted")

            if self.mode is CaptureMode.ENROLLMENT:
                self._dedup.check(descriptor, self._existing)

            try:
                image = encode_jpeg_data_url(frame.bgr, self.config.jpeg_quality)
            except FrameReadError as exc:
                raise CaptureFailure("Failed to capture face data") from exc
        except DuplicateFaceError as exc:
            self._last_error = exc
            self._apply(CaptureEvent.DUPLICATE)
            raise
        except CaptureFailure as exc:
            self._last_error = exc
            self._apply(CaptureEvent.CAPTURE_FAILED)
            self._logger.warning("[Capture] Capture failed: %s", exc)
            raise

        pose_name = self._session.current_pose.name
        result = CaptureResult(
            descriptor=descriptor,
            image=image,
            confidence=float(detection.confidence),
            quality=quality,
            pose=pose_name,
        )
        self._apply(CaptureEvent.CAPTURED)
        self._last_error = None
        pending: List[Tuple[Callable[..., None], tuple]] = []

        if self.mode is CaptureMode.ATTENDANCE:
            self._session.add(result)
            self._result = result
            self._apply(CaptureEvent.COMPLETED)
            self._logger.info("[Capture] Attendance capture complete (score=%.2f)", quality.score)
            if self._on_capture_complete:
                pending.append((self._on_capture_complete, (result,)))
            return pending

        self._session.add(result)
        index = len(self._session.captures)
        self._logger.info(
            "[Capture] Pose %s captured (%s/%s, score=%.2f)",
            pose_name,
            index,
            self._session.required,
            quality.score,
        )
        if self._on_pose_captured:
            pending.append((self._on_pose_captured, (result, index)))

        if self._session.is_complete():
            best = self._session.best()
            self._result = best
            self._apply(CaptureEvent.COMPLETED)
            self._logger.info("[Capture] Enrollment complete, best pose=%s score=%.2f", best.pose, best.quality.score)
            if self._on_capture_complete:
                pending.append((self._on_capture_complete, (best,)))
        else:
            self._apply(CaptureEvent.NEXT_POSE)
        return pending

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def snapshot(self) -> DetectionState:
        with self._lock:
            return self._snapshot_locked(self._clock())

    def _snapshot_locked(self, now: float) -> DetectionState:
        detection = self._detection
        if self.mode is CaptureMode.ATTENDANCE:
            current_pose, instruction = "center", "Look straight at the camera"
        else:
            pose = self._session.current_pose
            current_pose, instruction = pose.name, pose.instruction
        holding = self._phase is CapturePhase.HOLDING
        return DetectionState(
            phase=self._phase.value,
            mode=self.mode,
            is_detecting=self._phase in DETECTING_PHASES,
            face_detected=detection is not None,
            confidence=float(detection.confidence) if detection is not None else 0.0,
            quality=self._quality,
            box=detection.box if detection is not None else None,
            current_pose=current_pose,
            instruction=instruction,
            environment=self._environment,
            captured=len(self._session.captures),
            required=self._session.required,
            hold_progress=self._timer.progress(now) if holding else 0.0,
        )

    def _apply(self, event: CaptureEvent) -> None:
        previous = self._phase
        self._phase = transition(previous, event)
        if previous is not self._phase:
            self._logger.debug("[Capture] %s --%s--> %s", previous.value, event.value, self._phase.value)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------
    def _dispatch(self, pending: List[Tuple[Callable[..., None], tuple]]) -> None:
        for callback, args in pending:
            callback(*args)

    def _notify_error(self, exc: CaptureError) -> None:
        if self._on_error:
            self._on_error(exc)

    def _notify_state(self, state: DetectionState) -> None:
        if self._on_state_change:
            self._on_state_change(state)
