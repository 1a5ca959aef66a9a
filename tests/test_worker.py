import logging
import threading

import pytest

from getlat.config import Instrumentation, WorkerConfig
from getlat.report import LogEmitter
from getlat.storage import StorageError
from getlat.window import SERIES_FIRST_BYTE, SERIES_PRE_BODY, SERIES_TOTAL
from getlat.worker import Worker


class FakeClock:
    def __init__(self) -> None:
        self._ns = 0

    def monotonic_ns(self) -> int:
        return self._ns

    def advance_ms(self, ms: float) -> None:
        self._ns += int(ms * 1_000_000)


class FakeBody:
    def __init__(self, payload: bytes) -> None:
        self._payload = payload
        self.read = 0
        self.closed = False

    def iter_chunks(self, chunk_size=65536):
        for offset in range(0, len(self._payload), chunk_size):
            chunk = self._payload[offset : offset + chunk_size]
            self.read += len(chunk)
            yield chunk

    def close(self) -> None:
        self.closed = True


class FixedLatencyReader:
    def __init__(self, clock: FakeClock, latency_ms: float, payload: bytes = b"x" * 100) -> None:
        self.clock = clock
        self.latency_ms = latency_ms
        self.payload = payload
        self.bodies = []
        self.calls = []

    def get(self, bucket, key, trace=None):
        self.calls.append((bucket, key))
        self.clock.advance_ms(self.latency_ms)
        body = FakeBody(self.payload)
        self.bodies.append(body)
        return body


class FailingReader:
    def __init__(self, clock: FakeClock, latency_ms: float) -> None:
        self.clock = clock
        self.latency_ms = latency_ms

    def get(self, bucket, key, trace=None):
        self.clock.advance_ms(self.latency_ms)
        raise StorageError("GET s3://b/k failed: HTTP 503 SlowDown req-id=R")


class TracingReader:
    """Fires every hook on odd calls; on even calls the hooks stay silent."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.count = 0

    def get(self, bucket, key, trace=None):
        self.count += 1
        assert trace is not None
        if self.count % 2:
            self.clock.advance_ms(1)
            trace.got_conn()
            self.clock.advance_ms(10 * self.count)
            trace.got_first_response_byte()
            trace.request_complete(f"req-{self.count}", f"ext-{self.count}")
        self.clock.advance_ms(5)
        return FakeBody(b"abc")


class CollectingEmitter:
    def __init__(self) -> None:
        self.summaries = []

    def emit(self, worker_index, snapshot) -> None:
        self.summaries.append((worker_index, snapshot))


def _config(instrumentation=Instrumentation.COARSE, window_size=3):
    return WorkerConfig(
        bucket="bucket", key="key", window_size=window_size, instrumentation=instrumentation
    )


def test_worker_fixed_latency_emits_one_summary(caplog):
    caplog.set_level(logging.INFO, logger="getlat.report")
    clock = FakeClock()
    reader = FixedLatencyReader(clock, 50.0)
    worker = Worker(
        0, _config(), reader, LogEmitter(detailed=False), clock_ns=clock.monotonic_ns
    )
    for _ in range(3):
        worker.step()

    lines = [rec.getMessage() for rec in caplog.records if rec.name == "getlat.report"]
    assert len(lines) == 1
    line = lines[0]
    assert line.startswith("worker 0 sampled 3")
    assert (
        "with body: min=50.000ms max=50.000ms 50p=50.000ms 75p=50.000ms 95p=50.000ms" in line
    )
    assert "slowest request" not in line
    assert reader.calls == [("bucket", "key")] * 3
    assert all(body.closed and body.read == 100 for body in reader.bodies)


def test_worker_failures_are_measured_and_logged(caplog):
    caplog.set_level(logging.INFO)
    clock = FakeClock()
    emitter = CollectingEmitter()
    worker = Worker(
        2, _config(window_size=4), FailingReader(clock, 7.0), emitter, clock_ns=clock.monotonic_ns
    )
    for _ in range(8):
        worker.step()

    assert len(emitter.summaries) == 2
    for index, snapshot in emitter.summaries:
        assert index == 2
        assert snapshot.series[SERIES_TOTAL] == (pytest.approx(7.0),) * 4
        assert snapshot.failures == 4
    warnings = [rec for rec in caplog.records if rec.levelno == logging.WARNING]
    assert len(warnings) == 8
    assert "HTTP 503" in warnings[0].getMessage()


def test_worker_detailed_handles_missing_hook_samples():
    clock = FakeClock()
    emitter = CollectingEmitter()
    worker = Worker(
        1,
        _config(Instrumentation.DETAILED, window_size=4),
        TracingReader(clock),
        emitter,
        clock_ns=clock.monotonic_ns,
    )
    for _ in range(4):
        worker.step()

    assert len(emitter.summaries) == 1
    _, snapshot = emitter.summaries[0]
    assert snapshot.count == 4
    assert snapshot.series[SERIES_FIRST_BYTE] == (pytest.approx(10.0), pytest.approx(30.0))
    assert snapshot.series[SERIES_PRE_BODY] == (pytest.approx(11.0), pytest.approx(31.0))
    # call 3 takes 1 + 30 + 5 ms and is the slowest
    assert snapshot.slowest.duration_ms == pytest.approx(36.0)
    assert snapshot.slowest.request_id == "req-3"
    assert snapshot.slowest.extended_request_id == "ext-3"


def test_worker_detailed_summary_reports_empty_series(caplog):
    caplog.set_level(logging.INFO, logger="getlat.report")
    clock = FakeClock()
    worker = Worker(
        0,
        _config(Instrumentation.DETAILED, window_size=2),
        FixedLatencyReader(clock, 4.0),
        LogEmitter(detailed=True),
        clock_ns=clock.monotonic_ns,
    )
    worker.step()
    worker.step()
    (line,) = [rec.getMessage() for rec in caplog.records if rec.name == "getlat.report"]
    assert "first byte: n/a" in line
    assert "up to body: n/a" in line
    assert "with body: min=4.000ms" in line
    assert "req-id: -" in line


def test_worker_run_stops_on_event():
    clock = FakeClock()
    stop = threading.Event()
    emitter = CollectingEmitter()

    class StoppingReader(FixedLatencyReader):
        def get(self, bucket, key, trace=None):
            body = super().get(bucket, key, trace)
            if len(self.calls) == 6:
                stop.set()
            return body

    reader = StoppingReader(clock, 1.0)
    worker = Worker(0, _config(), reader, emitter, clock_ns=clock.monotonic_ns)
    worker.run(stop)
    assert worker.iterations == 6
    assert len(emitter.summaries) == 2
