from __future__ import annotations

import logging
import sys
import threading
from typing import Any, BinaryIO, Protocol

import orjson

from .config import OutputFormat
from .percentile import SeriesSummary, summarize
from .window import SERIES_FIRST_BYTE, SERIES_PRE_BODY, SERIES_TOTAL, WindowSnapshot

logger = logging.getLogger(__name__)

SERIES_LABELS = {
    SERIES_FIRST_BYTE: "first byte",
    SERIES_PRE_BODY: "up to body",
    SERIES_TOTAL: "with body",
}

_ORJSON_NDJSON_OPTIONS = orjson.OPT_APPEND_NEWLINE


def format_series(summary: SeriesSummary | None) -> str:
    if summary is None:
        return "n/a"
    return (
        f"min={summary.min_ms:.3f}ms max={summary.max_ms:.3f}ms "
        f"50p={summary.p50_ms:.3f}ms 75p={summary.p75_ms:.3f}ms 95p={summary.p95_ms:.3f}ms"
    )


def format_summary(worker_index: int, snapshot: WindowSnapshot, *, detailed: bool) -> str:
    parts = [f"worker {worker_index} sampled {snapshot.count}"]
    if snapshot.failures:
        parts.append(f"failed {snapshot.failures}")
    for name, values in snapshot.series.items():
        label = SERIES_LABELS.get(name, name)
        parts.append(f"{label}: {format_series(summarize(values))}")
    if detailed:
        slowest = snapshot.slowest
        if slowest is None:
            parts.append("slowest request: n/a")
        else:
            parts.append(
                f"slowest request: {slowest.duration_ms:.3f}ms "
                f"req-id: {slowest.request_id or '-'} "
                f"x-amz-id-2: {slowest.extended_request_id or '-'}"
            )
    return "; ".join(parts)


def summary_record(worker_index: int, snapshot: WindowSnapshot, *, detailed: bool) -> dict[str, Any]:
    series_payload: dict[str, Any] = {}
    for name, values in snapshot.series.items():
        summary = summarize(values)
        series_payload[name] = summary.to_dict() if summary is not None else None
    record: dict[str, Any] = {
        "record_type": "window_summary",
        "worker": int(worker_index),
        "count": int(snapshot.count),
        "failures": int(snapshot.failures),
        "series": series_payload,
    }
    if detailed:
        slowest = snapshot.slowest
        record["slowest"] = (
            None
            if slowest is None
            else {
                "duration_ms": slowest.duration_ms,
                "request_id": slowest.request_id,
                "extended_request_id": slowest.extended_request_id,
            }
        )
    return record


class SummaryEmitter(Protocol):
    def emit(self, worker_index: int, snapshot: WindowSnapshot) -> None: ...


class LogEmitter:
    def __init__(self, *, detailed: bool, log: logging.Logger | None = None) -> None:
        self._detailed = detailed
        self._log = log or logger

    def emit(self, worker_index: int, snapshot: WindowSnapshot) -> None:
        self._log.info(format_summary(worker_index, snapshot, detailed=self._detailed))


class NdjsonEmitter:
    """Writes one JSON line per summary; safe to share between workers."""

    def __init__(self, *, detailed: bool, stream: BinaryIO | None = None) -> None:
        self._detailed = detailed
        self._stream = stream if stream is not None else sys.stdout.buffer
        self._lock = threading.Lock()

    def emit(self, worker_index: int, snapshot: WindowSnapshot) -> None:
        line = orjson.dumps(
            summary_record(worker_index, snapshot, detailed=self._detailed),
            option=_ORJSON_NDJSON_OPTIONS,
        )
        with self._lock:
            self._stream.write(line)
            self._stream.flush()


def make_emitter(output_format: OutputFormat, *, detailed: bool) -> SummaryEmitter:
    if output_format is OutputFormat.NDJSON:
        return NdjsonEmitter(detailed=detailed)
    return LogEmitter(detailed=detailed)
