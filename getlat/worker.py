from __future__ import annotations

import logging
import threading
from typing import Callable

from .config import WorkerConfig
from .report import SummaryEmitter
from .storage import ObjectReader, StorageError, drain
from .timer import RequestTimer
from .window import COARSE_SERIES, DETAILED_SERIES, SERIES_TOTAL, SampleWindow, WindowSnapshot

logger = logging.getLogger(__name__)


class Worker:
    """Closed-loop GET sampler owning a private SampleWindow.

    Each iteration issues one GET, drains the body, records the request and
    emits a summary once ``window_size`` requests have been recorded. Failed
    requests are logged and still measured.
    """

    def __init__(
        self,
        index: int,
        config: WorkerConfig,
        reader: ObjectReader,
        emitter: SummaryEmitter,
        *,
        clock_ns: Callable[[], int] | None = None,
    ) -> None:
        self.index = index
        self.config = config
        self.window = SampleWindow.for_series(
            DETAILED_SERIES if config.detailed else COARSE_SERIES
        )
        self.iterations = 0
        self._reader = reader
        self._emitter = emitter
        self._clock_ns = clock_ns

    def step(self) -> WindowSnapshot | None:
        timer = RequestTimer(
            self.config.instrumentation, self.window.record, clock_ns=self._clock_ns
        )
        try:
            body = self._reader.get(self.config.bucket, self.config.key, timer.trace)
            drain(body)
        except StorageError as exc:
            self.window.record_failure()
            logger.warning("worker %d: %s", self.index, exc)
        duration_ms = timer.stop()
        self.iterations += 1

        self.window.record(SERIES_TOTAL, duration_ms)
        self.window.record_slow_candidate(
            duration_ms, timer.request_id, timer.extended_request_id
        )
        if not self.window.should_flush(self.config.window_size):
            return None
        snapshot = self.window.flush_and_reset()
        self._emitter.emit(self.index, snapshot)
        return snapshot

    def run(self, stop: threading.Event | None = None) -> None:
        if stop is None:
            stop = threading.Event()
        logger.debug("worker %d started", self.index)
        while not stop.is_set():
            self.step()
        logger.debug("worker %d stopped after %d requests", self.index, self.iterations)
