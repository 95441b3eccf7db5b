"""
Face detection, landmarks and descriptors on dlib.

``DlibFaceDetector`` runs the HOG frontal-face detector (with scores), the
68-point shape predictor and the ResNet descriptor model. Model files come
from the ``face_recognition_models`` distribution unless a directory is given.

``FaceModelService`` loads a backend on a background thread and rejects
``detect`` calls until loading has finished.
"""

import logging
import math
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

from core.capture.types import BoundingBox, FaceDetection, FaceLandmarks
from core.errors import ModelLoadError, ModelNotReadyError
from core.vision.pipeline import FrameSample

logger = logging.getLogger(__name__)

SHAPE_PREDICTOR_FILE = 'shape_predictor_68_face_landmarks.dat'
RECOGNITION_MODEL_FILE = 'dlib_face_recognition_resnet_model_v1.dat'

# 68-point layout indices
LEFT_EYE_FIRST = 36
RIGHT_EYE_FIRST = 42
NOSE_TIP = 30


class FaceDetector(Protocol):
    def load_models(self, model_location: Optional[str] = None) -> None:
        ...

    def detect(self, frame: FrameSample) -> Optional[FaceDetection]:
        ...


def score_to_confidence(score: float, gain: float = 2.0) -> float:
    """Map an unbounded HOG/SVM score onto 0..1 with a logistic curve."""
    if not math.isfinite(score):
        return 0.0
    return 1.0 / (1.0 + math.exp(-gain * score))


class DlibFaceDetector:
    """Single best face per frame: box, 68 landmarks, 128-d descriptor."""

    def __init__(self, upsample: int = 0, num_jitters: int = 1, score_gain: float = 2.0):
        self.upsample = upsample
        self.num_jitters = num_jitters
        self.score_gain = score_gain
        self._detector = None
        self._predictor = None
        self._encoder = None

    @property
    def loaded(self) -> bool:
        return self._encoder is not None

    def _resolve_paths(self, model_location: Optional[str]):
        if model_location:
            root = Path(model_location)
            return root / SHAPE_PREDICTOR_FILE, root / RECOGNITION_MODEL_FILE
        import face_recognition_models

        return (
            Path(face_recognition_models.pose_predictor_model_location()),
            Path(face_recognition_models.face_recognition_model_location()),
        )

    def load_models(self, model_location: Optional[str] = None) -> None:
        try:
            import dlib

            predictor_path, encoder_path = self._resolve_paths(model_location)
            for path in (predictor_path, encoder_path):
                if not path.exists():
                    raise ModelLoadError(f"Model file not found: {path}")
            self._detector = dlib.get_frontal_face_detector()
            self._predictor = dlib.shape_predictor(str(predictor_path))
            self._encoder = dlib.face_recognition_model_v1(str(encoder_path))
        except ModelLoadError:
            raise
        except (ImportError, RuntimeError, OSError) as exc:
            raise ModelLoadError(f"Failed to load face models: {exc}") from exc
        logger.info("[Detector] dlib models loaded from %s", predictor_path.parent)

    def detect(self, frame: FrameSample) -> Optional[FaceDetection]:
        if not self.loaded:
            raise ModelNotReadyError("Face models are not loaded")
        rgb = np.ascontiguousarray(frame.rgb)
        rects, scores, _ = self._detector.run(rgb, self.upsample, 0.0)
        if not rects:
            return None

        best = int(np.argmax(scores))
        rect = rects[best]
        shape = self._predictor(rgb, rect)
        points = tuple((float(p.x), float(p.y)) for p in shape.parts())
        descriptor = np.array(
            self._encoder.compute_face_descriptor(rgb, shape, self.num_jitters),
            dtype='float32',
        )

        left, top = max(0, rect.left()), max(0, rect.top())
        right, bottom = min(frame.width, rect.right()), min(frame.height, rect.bottom())
        box = BoundingBox(
            x=float(left),
            y=float(top),
            width=float(max(0, right - left)),
            height=float(max(0, bottom - top)),
        )
        landmarks = FaceLandmarks(
            left_eye=points[LEFT_EYE_FIRST],
            right_eye=points[RIGHT_EYE_FIRST],
            nose_tip=points[NOSE_TIP],
            points=points,
        )
        return FaceDetection(
            box=box,
            landmarks=landmarks,
            descriptor=descriptor,
            confidence=score_to_confidence(float(scores[best]), self.score_gain),
        )


class FaceModelService:
    """Owns a detector backend and its (possibly slow) model loading."""

    STATUS_IDLE = 'idle'
    STATUS_LOADING = 'loading'
    STATUS_READY = 'ready'
    STATUS_FAILED = 'failed'

    def __init__(self, backend: Optional[FaceDetector] = None, model_location: Optional[str] = None,
                 warmup: bool = True):
        self.backend = backend or DlibFaceDetector()
        self.model_location = model_location
        self.warmup = warmup
        self._lock = threading.Lock()
        self._status = self.STATUS_IDLE
        self._error: Optional[ModelLoadError] = None
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    @property
    def error(self) -> Optional[ModelLoadError]:
        with self._lock:
            return self._error

    def is_ready(self) -> bool:
        return self._ready.is_set()

    def load(self) -> None:
        """Load synchronously; raises ModelLoadError."""
        with self._lock:
            self._status = self.STATUS_LOADING
            self._error = None
        try:
            self.backend.load_models(self.model_location)
            if self.warmup:
                blank = np.zeros((120, 160, 3), dtype=np.uint8)
                self.backend.detect(FrameSample(frame_id='warmup', timestamp=datetime.now(), bgr=blank))
        except ModelLoadError as exc:
            self._mark_failed(exc)
            raise
        except Exception as exc:
            error = ModelLoadError(f"Face model loading failed: {exc}")
            self._mark_failed(error)
            raise error from exc
        with self._lock:
            self._status = self.STATUS_READY
        self._ready.set()
        logger.info("[Detector] ✅ Face models ready")

    def _mark_failed(self, exc: ModelLoadError) -> None:
        with self._lock:
            self._status = self.STATUS_FAILED
            self._error = exc
        logger.error("[Detector] ❌ Face model loading failed: %s", exc)

    def load_async(self) -> threading.Thread:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return self._thread
            self._thread = threading.Thread(target=self._load_quietly, name='face-model-loader', daemon=True)
            thread = self._thread
        thread.start()
        return thread

    def _load_quietly(self) -> None:
        try:
            self.load()
        except ModelLoadError:
            # Already recorded in status/error for callers polling the service.
            pass

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def detect(self, frame: FrameSample) -> Optional[FaceDetection]:
        with self._lock:
            error = self._error
        if error is not None:
            raise error
        if not self._ready.is_set():
            raise ModelNotReadyError("Face models are still loading")
        return self.backend.detect(frame)

    def get_status(self) -> dict:
        with self._lock:
            return {
                'status': self._status,
                'ready': self._ready.is_set(),
                'error': self._error.message if self._error else None,
            }
