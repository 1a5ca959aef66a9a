from __future__ import annotations

import threading
from typing import Callable

from .config import WorkerConfig
from .report import SummaryEmitter
from .storage import ObjectReader
from .worker import Worker


class Supervisor:
    def __init__(
        self,
        config: WorkerConfig,
        reader: ObjectReader,
        emitter: SummaryEmitter,
        concurrency: int,
        *,
        clock_ns: Callable[[], int] | None = None,
        stop: threading.Event | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.stop_event = stop if stop is not None else threading.Event()
        self.workers = [
            Worker(index, config, reader, emitter, clock_ns=clock_ns)
            for index in range(concurrency)
        ]
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        for worker in self.workers:
            thread = threading.Thread(
                target=worker.run,
                args=(self.stop_event,),
                name=f"worker-{worker.index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def wait(self, poll_seconds: float = 1.0) -> None:
        # Short joins keep the main thread responsive to KeyboardInterrupt.
        for thread in self._threads:
            while thread.is_alive():
                thread.join(poll_seconds)

    def run(self) -> None:
        self.start()
        self.wait()

    def stop(self) -> None:
        self.stop_event.set()
