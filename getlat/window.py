from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

SERIES_TOTAL = "total"
SERIES_FIRST_BYTE = "first_byte"
SERIES_PRE_BODY = "pre_body"

COARSE_SERIES = (SERIES_TOTAL,)
DETAILED_SERIES = (SERIES_FIRST_BYTE, SERIES_PRE_BODY, SERIES_TOTAL)


@dataclass(frozen=True, slots=True)
class SlowRequest:
    duration_ms: float
    request_id: str
    extended_request_id: str


@dataclass(frozen=True)
class WindowSnapshot:
    series: Mapping[str, tuple[float, ...]]
    slowest: SlowRequest | None = None
    failures: int = 0

    @property
    def count(self) -> int:
        return len(self.series.get(SERIES_TOTAL, ()))


@dataclass
class SampleWindow:
    """Latency samples collected by one worker between two summaries."""

    series_names: tuple[str, ...] = COARSE_SERIES
    _series: dict[str, list[float]] = field(init=False, default_factory=dict, repr=False)
    _slowest: SlowRequest | None = field(init=False, default=None, repr=False)
    _failures: int = field(init=False, default=0, repr=False)

    def __post_init__(self) -> None:
        if SERIES_TOTAL not in self.series_names:
            self.series_names = (*self.series_names, SERIES_TOTAL)
        self._series = {name: [] for name in self.series_names}

    @classmethod
    def for_series(cls, names: Iterable[str]) -> "SampleWindow":
        return cls(series_names=tuple(names))

    def record(self, series: str, value: float) -> None:
        try:
            self._series[series].append(float(value))
        except KeyError:
            raise KeyError(f"unknown series: {series}") from None

    def record_slow_candidate(
        self, duration_ms: float, request_id: str, extended_request_id: str
    ) -> None:
        current = self._slowest.duration_ms if self._slowest is not None else 0.0
        if duration_ms <= current:
            return
        self._slowest = SlowRequest(
            duration_ms=float(duration_ms),
            request_id=request_id,
            extended_request_id=extended_request_id,
        )

    def record_failure(self) -> None:
        self._failures += 1

    @property
    def slowest(self) -> SlowRequest | None:
        return self._slowest

    def __len__(self) -> int:
        return len(self._series[SERIES_TOTAL])

    def series_len(self, series: str) -> int:
        return len(self._series[series])

    def should_flush(self, window_size: int) -> bool:
        return len(self._series[SERIES_TOTAL]) >= window_size

    def flush_and_reset(self) -> WindowSnapshot:
        snapshot = WindowSnapshot(
            series=MappingProxyType(
                {name: tuple(sorted(values)) for name, values in self._series.items()}
            ),
            slowest=self._slowest,
            failures=self._failures,
        )
        for values in self._series.values():
            values.clear()
        self._slowest = None
        self._failures = 0
        return snapshot
