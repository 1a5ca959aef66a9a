from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Sequence

SUMMARY_PERCENTILES = (0.50, 0.75, 0.95)


@dataclass(frozen=True, slots=True)
class SeriesSummary:
    count: int
    min_ms: float
    max_ms: float
    p50_ms: float
    p75_ms: float
    p95_ms: float

    def to_dict(self) -> dict[str, float]:
        return {
            "count": int(self.count),
            "min_ms": float(self.min_ms),
            "max_ms": float(self.max_ms),
            "p50_ms": float(self.p50_ms),
            "p75_ms": float(self.p75_ms),
            "p95_ms": float(self.p95_ms),
        }


def percentile(values: Sequence[float], p: float) -> float:
    """Interpolated percentile of an ascending sequence.

    Uses the nearest-rank position ``p * (n + 1)`` and interpolates linearly
    between the two neighbouring samples. Positions outside the sample range
    clamp to the minimum or maximum.
    """
    if not 0.0 < p <= 1.0:
        raise ValueError(f"percentile fraction must be in (0, 1], got {p}")
    size = len(values)
    if size == 0:
        raise ValueError("percentile of an empty sample set")
    pos = p * (size + 1)
    if pos < 1.0:
        return float(values[0])
    if pos >= size:
        return float(values[size - 1])
    rank = int(math.floor(pos))
    lower = float(values[rank - 1])
    upper = float(values[rank])
    return lower + (pos - rank) * (upper - lower)


def summarize(values: Sequence[float]) -> SeriesSummary | None:
    if not values:
        return None
    p50, p75, p95 = (percentile(values, p) for p in SUMMARY_PERCENTILES)
    return SeriesSummary(
        count=len(values),
        min_ms=float(values[0]),
        max_ms=float(values[-1]),
        p50_ms=p50,
        p75_ms=p75,
        p95_ms=p95,
    )
