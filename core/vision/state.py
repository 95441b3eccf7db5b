"""Shared camera handle for whichever capture session currently owns it."""
from __future__ import annotations

import logging
import threading
from typing import Optional

from core.errors import CameraAccessError
from .camera_manager import CameraManager, CameraProvider, CameraSettings, ErrorCallback, ReadyCallback
from .pipeline import FrameSample, FrameSampler


class SharedCamera:
    """Lazily opened camera plus its frame sampler, guarded by a lock.

    Sessions ``acquire()`` a sampler when they start and ``release()`` the
    device when they finish, so the webcam light is off between sessions.
    Frame numbering restarts with every acquire.
    """

    def __init__(
        self,
        settings: Optional[CameraSettings] = None,
        *,
        provider: Optional[CameraProvider] = None,
        on_ready: Optional[ReadyCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings or CameraSettings()
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._manager = CameraManager(self.settings, provider=provider, on_ready=on_ready, on_error=on_error)
        self._sampler: Optional[FrameSampler] = None
        self.acquisitions = 0

    def acquire(self) -> FrameSampler:
        """Open the device if needed; raises CameraAccessError."""
        with self._lock:
            if not self._manager.is_enabled():
                raise CameraAccessError("Camera is disabled")
            self._manager.open()
            if self._sampler is None:
                self._sampler = FrameSampler(self._manager, source_name="camera")
                self.acquisitions += 1
            return self._sampler

    def release(self) -> None:
        with self._lock:
            self._manager.close()
            if self._sampler is not None:
                self._logger.debug("[Camera] Sampler released after %s frames", self._sampler.frame_counter)
            self._sampler = None

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._manager.set_enabled(enabled)
            if not enabled:
                self._sampler = None

    def next_frame(self) -> FrameSample:
        return self.acquire().sample()

    def status(self) -> dict:
        with self._lock:
            payload = {
                "enabled": self._manager.is_enabled(),
                "opened": self._manager.is_open(),
                "index": self.settings.index,
            }
            payload.update(self._manager.info.to_dict())
            return payload
