"""Fixed-cadence detection loop running on a background thread."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from core.errors import CaptureFailure
from .orchestrator import CaptureOrchestrator

logger = logging.getLogger(__name__)


class DetectionLoop:
    """Calls ``orchestrator.tick()`` every ``interval_ms``.

    Ticks are never queued: when a detection cycle overruns the interval the
    missed ticks are dropped and counted in ``skipped_ticks``. The loop exits on
    ``stop()`` or once the orchestrator leaves a detecting phase. An unexpected
    error escaping ``tick()`` fails the session with a CaptureFailure so
    ``on_error`` listeners hear about it.
    """

    def __init__(
        self,
        orchestrator: CaptureOrchestrator,
        interval_ms: int = 100,
        clock: Callable[[], float] = time.monotonic,
        name: str = "capture-detection",
    ):
        self.orchestrator = orchestrator
        self.interval = max(1, int(interval_ms)) / 1000.0
        self._clock = clock
        self._name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0
        self.skipped_ticks = 0

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("[Loop] Detection loop started (interval=%.0fms)", self.interval * 1000)

    def stop(self, timeout: Optional[float] = 2.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if not self.orchestrator.is_detecting:
                break
            started = self._clock()
            try:
                self.orchestrator.tick()
            except Exception as exc:
                logger.exception("[Loop] Detection tick crashed")
                self.orchestrator.fail(CaptureFailure(f"Detection loop stopped: {exc}"))
                break
            self.ticks += 1
            elapsed = self._clock() - started
            if elapsed > self.interval:
                missed = int(elapsed // self.interval)
                self.skipped_ticks += missed
                logger.debug("[Loop] Detection overran by %.0fms, skipped %s tick(s)", (elapsed - self.interval) * 1000, missed)
                continue
            self._stop_event.wait(self.interval - elapsed)
        logger.info(
            "[Loop] Detection loop exited (ticks=%s, skipped=%s, phase=%s)",
            self.ticks,
            self.skipped_ticks,
            self.orchestrator.phase.value,
        )
