"""
Desktop capture console (Tkinter)

A small window that drives the capture pipeline against a local webcam:
live preview with the detected face box, environment/quality readout, and an
event list. Enrollment descriptors are appended to ENROLLED_DESCRIPTORS_FILE
and used for duplicate rejection in later enrollments.

Run:
  - pip install -e .
  - python capture_console.py
"""
import logging
import tkinter as tk
from tkinter import ttk

import cv2
import numpy as np
from PIL import Image, ImageTk

import config
from core.capture.config import CaptureConfig
from core.capture.loop import DetectionLoop
from core.capture.orchestrator import CaptureOrchestrator
from core.capture.types import CaptureMode
from core.errors import CaptureError
from core.vision.camera_manager import CameraSettings
from core.vision.state import SharedCamera
from services.face_detector import DlibFaceDetector, FaceModelService

logger = logging.getLogger(__name__)

PREVIEW_WIDTH = 480
PREVIEW_REFRESH_MS = 100
BOX_COLOURS = {True: (0, 200, 0), False: (0, 165, 255)}


def load_enrolled_descriptors(path=config.ENROLLED_DESCRIPTORS_FILE):
    if not path.exists():
        return []
    stored = np.load(path)
    return [row for row in stored.reshape(len(stored), -1)]


def append_enrolled_descriptor(descriptor, path=config.ENROLLED_DESCRIPTORS_FILE):
    rows = load_enrolled_descriptors(path)
    rows.append(np.asarray(descriptor, dtype='float32'))
    path.parent.mkdir(parents=True, exist_ok=True)
    np.save(path, np.stack(rows))
    return len(rows)


class CaptureConsoleApp:
    def __init__(self, root, model_service):
        self.root = root
        self.root.title('Face Capture - Console UI')
        self.model_service = model_service
        self.capture_config = CaptureConfig.from_settings(vars(config))
        self.camera = SharedCamera(CameraSettings(
            index=config.CAMERA_INDEX,
            width=config.CAMERA_WIDTH,
            height=config.CAMERA_HEIGHT,
            warmup_frames=config.CAMERA_WARMUP_FRAMES,
            buffer_size=config.CAMERA_BUFFER_SIZE,
            max_read_failures=config.CAMERA_MAX_READ_FAILURES,
        ))
        self.orchestrator = None
        self.loop = None

        self.frame = ttk.Frame(root, padding=8)
        self.frame.grid(sticky='nsew')

        self.preview = ttk.Label(self.frame)
        self.preview.grid(row=0, column=0, columnspan=2, pady=4)
        self.status_var = tk.StringVar(value='Idle')
        ttk.Label(self.frame, textvariable=self.status_var, width=70).grid(row=1, column=0, columnspan=2, sticky='w')
        self.progress = ttk.Progressbar(self.frame, length=PREVIEW_WIDTH, maximum=1.0)
        self.progress.grid(row=2, column=0, columnspan=2, pady=4)

        # Controls
        ctrl = ttk.Frame(self.frame)
        ctrl.grid(row=3, column=0, columnspan=2, sticky='w')
        self.btn_enroll = ttk.Button(ctrl, text='Enroll', command=lambda: self.start(CaptureMode.ENROLLMENT))
        self.btn_enroll.grid(row=0, column=0, padx=4)
        self.btn_attend = ttk.Button(ctrl, text='Attendance', command=lambda: self.start(CaptureMode.ATTENDANCE))
        self.btn_attend.grid(row=0, column=1, padx=4)
        self.btn_capture = ttk.Button(ctrl, text='Capture', command=self.capture, state='disabled')
        self.btn_capture.grid(row=0, column=2, padx=4)
        self.btn_reset = ttk.Button(ctrl, text='Reset', command=self.reset, state='disabled')
        self.btn_reset.grid(row=0, column=3, padx=4)
        self.btn_stop = ttk.Button(ctrl, text='Stop', command=self.stop, state='disabled')
        self.btn_stop.grid(row=0, column=4, padx=4)

        ttk.Label(self.frame, text='Capture events').grid(row=4, column=0, sticky='w')
        self.listbox = tk.Listbox(self.frame, width=70, height=10)
        self.listbox.grid(row=5, column=0, columnspan=2, pady=6)

        self._photo = None
        self.root.after(PREVIEW_REFRESH_MS, self._refresh)

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------
    def start(self, mode):
        self.stop()
        if not self.model_service.is_ready():
            error = self.model_service.error
            self._push_event(f'Models not ready: {error.message}' if error else 'Models still loading, try again')
            return
        try:
            sampler = self.camera.acquire()
        except CaptureError as exc:
            self._push_event(f'Error starting camera: {exc}')
            return

        self.orchestrator = CaptureOrchestrator(
            self.model_service,
            config=self.capture_config,
            mode=mode,
            existing_descriptors=load_enrolled_descriptors() if mode is CaptureMode.ENROLLMENT else None,
            on_capture_complete=self._on_complete,
            on_error=self._on_error,
            on_pose_captured=self._on_pose,
            sampler=sampler,
        )
        self.orchestrator.start()
        self.loop = DetectionLoop(self.orchestrator, interval_ms=self.capture_config.detection_interval_ms)
        self.loop.start()
        self._set_running(True)
        self._push_event(f'Started {mode.value} on camera index={config.CAMERA_INDEX}')

    def stop(self):
        if self.loop is not None:
            self.loop.stop()
            self.loop = None
        if self.orchestrator is not None:
            self.orchestrator.stop()
            self._push_event('Stopped')
        self.camera.release()
        self._set_running(False)

    def capture(self):
        if self.orchestrator is None:
            return
        try:
            result = self.orchestrator.capture()
        except CaptureError as exc:
            self._push_event(f'Capture rejected: {exc.message}')
            return
        if result is None:
            self._push_event('Quality too low for manual capture')

    def reset(self):
        if self.orchestrator is None:
            return
        self.orchestrator.reset()
        if self.orchestrator.is_detecting and (self.loop is None or not self.loop.is_running()):
            self.loop = DetectionLoop(self.orchestrator, interval_ms=self.capture_config.detection_interval_ms)
            self.loop.start()
        self._push_event('Reset to first pose')

    def _set_running(self, running):
        self.btn_enroll.config(state='disabled' if running else 'normal')
        self.btn_attend.config(state='disabled' if running else 'normal')
        for button in (self.btn_capture, self.btn_reset, self.btn_stop):
            button.config(state='normal' if running else 'disabled')

    # ------------------------------------------------------------------
    # Orchestrator callbacks (detection thread)
    # ------------------------------------------------------------------
    def _on_pose(self, result, index):
        self._push_event(f'Pose {result.pose} captured ({index}), score={result.quality.score:.2f}')

    def _on_complete(self, result):
        orchestrator = self.orchestrator
        if orchestrator is not None and orchestrator.mode is CaptureMode.ENROLLMENT:
            total = append_enrolled_descriptor(result.descriptor)
            self._push_event(f'Enrollment complete: best pose={result.pose}, {total} enrolled')
        else:
            self._push_event(f'Attendance capture: confidence={result.confidence:.2f}, score={result.quality.score:.2f}')
        self.camera.release()

    def _on_error(self, exc):
        logger.warning('[Console] %s: %s', exc.code, exc.message)
        self._push_event(f'[{exc.code}] {exc.message}')

    # ------------------------------------------------------------------
    # UI
    # ------------------------------------------------------------------
    def _refresh(self):
        orchestrator = self.orchestrator
        if orchestrator is not None:
            state = orchestrator.snapshot()
            frame = orchestrator.latest_frame
            quality = f'{state.quality.score:.2f}' if state.quality else '-'
            env = state.environment
            self.status_var.set(
                f'{state.phase} | pose {state.current_pose} ({state.captured}/{state.required}): {state.instruction} | '
                f'q={quality} light={env.lighting.value} dist={env.distance.value} bg={env.background.value}'
            )
            self.progress['value'] = state.hold_progress
            if frame is not None:
                self._show(frame.bgr, state)
            if not state.is_detecting:
                self._set_running(False)
                self.btn_stop.config(state='normal')
        self.root.after(PREVIEW_REFRESH_MS, self._refresh)

    def _show(self, bgr, state):
        view = bgr.copy()
        if state.box is not None:
            box = state.box
            good = state.quality is not None and state.quality.score > self.capture_config.min_quality_score
            cv2.rectangle(
                view,
                (int(box.x), int(box.y)),
                (int(box.x + box.width), int(box.y + box.height)),
                BOX_COLOURS[good],
                2,
            )
        scale = PREVIEW_WIDTH / float(view.shape[1])
        small = cv2.resize(view, (0, 0), fx=scale, fy=scale)
        rgb = cv2.cvtColor(small, cv2.COLOR_BGR2RGB)
        self._photo = ImageTk.PhotoImage(Image.fromarray(rgb))
        self.preview.config(image=self._photo)

    def _push_event(self, text):
        # Callbacks arrive on the detection thread; Tk must be touched from the main loop
        def _add():
            self.listbox.insert(0, text)
            if self.listbox.size() > 200:
                self.listbox.delete(200, tk.END)

        self.root.after(0, _add)


def main():
    logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    model_service = FaceModelService(
        backend=DlibFaceDetector(
            upsample=config.FACE_DETECT_UPSAMPLE,
            num_jitters=config.FACE_DESCRIPTOR_JITTERS,
        ),
        model_location=config.FACE_MODEL_DIR,
    )
    model_service.load_async()

    root = tk.Tk()
    app = CaptureConsoleApp(root, model_service)
    root.protocol('WM_DELETE_WINDOW', lambda: (app.stop(), root.destroy()))
    root.mainloop()


if __name__ == '__main__':
    main()
