from __future__ import annotations

import time
from typing import Callable

from .config import Instrumentation
from .window import SERIES_FIRST_BYTE, SERIES_PRE_BODY

NS_PER_MS = 1_000_000

Recorder = Callable[[str, float], None]


def monotonic_ns() -> int:
    # perf_counter_ns is higher resolution than monotonic_ns on some platforms.
    return time.perf_counter_ns()


def ns_to_ms(delta_ns: int) -> float:
    return delta_ns / NS_PER_MS


class RequestTrace:
    """Lifecycle hooks for one in-flight request.

    The transport calls ``got_conn`` once a pooled connection is connected and
    ready to send, ``got_first_response_byte`` once the response head has been read,
    and ``request_complete`` once the response is handed back to the client
    but before the body is drained.
    """

    def __init__(self, start_ns: int, record: Recorder, clock_ns: Callable[[], int]) -> None:
        self._start_ns = start_ns
        self._conn_ns = start_ns
        self._record = record
        self._clock_ns = clock_ns
        self.request_id = ""
        self.extended_request_id = ""

    def got_conn(self) -> None:
        self._conn_ns = self._clock_ns()

    def got_first_response_byte(self) -> None:
        self._record(SERIES_FIRST_BYTE, ns_to_ms(self._clock_ns() - self._conn_ns))

    def request_complete(self, request_id: str, extended_request_id: str) -> None:
        self._record(SERIES_PRE_BODY, ns_to_ms(self._clock_ns() - self._start_ns))
        self.request_id = request_id or ""
        self.extended_request_id = extended_request_id or ""


class RequestTimer:
    def __init__(
        self,
        instrumentation: Instrumentation,
        record: Recorder,
        *,
        clock_ns: Callable[[], int] | None = None,
    ) -> None:
        self._clock_ns = clock_ns or monotonic_ns
        self._start_ns = self._clock_ns()
        self.trace: RequestTrace | None = None
        if instrumentation is Instrumentation.DETAILED:
            self.trace = RequestTrace(self._start_ns, record, self._clock_ns)

    @property
    def request_id(self) -> str:
        return self.trace.request_id if self.trace is not None else ""

    @property
    def extended_request_id(self) -> str:
        return self.trace.extended_request_id if self.trace is not None else ""

    def stop(self) -> float:
        return ns_to_ms(self._clock_ns() - self._start_ns)
