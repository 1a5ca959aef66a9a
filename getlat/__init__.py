"""Concurrent latency sampler for S3 object GETs."""

__all__ = [
    "cli",
    "config",
    "percentile",
    "report",
    "storage",
    "supervisor",
    "timer",
    "transport",
    "window",
    "worker",
]
