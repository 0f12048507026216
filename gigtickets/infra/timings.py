# gigtickets/infra/timings.py
"""
Hot-path latency counters for the door and webhook paths.

    async with timeit("ledger.mark_redeemed"):
        await ledger.mark_redeemed(ticket_id)

Each kind keeps running statistics (Welford), so memory stays flat over a
whole night of scanning. Single event loop, no locks.
"""
from __future__ import annotations
import math
import time
from typing import Any, Dict, List


class _Series:
    __slots__ = ("n", "mean", "m2", "max")

    def __init__(self) -> None:
        self.n = 0
        self.mean = 0.0
        self.m2 = 0.0
        self.max = 0.0

    def add(self, value: float) -> None:
        self.n += 1
        delta = value - self.mean
        self.mean += delta / self.n
        self.m2 += delta * (value - self.mean)
        self.max = max(self.max, value)

    @property
    def std(self) -> float:
        # sample standard deviation, 0 for a single value
        return math.sqrt(self.m2 / (self.n - 1)) if self.n > 1 else 0.0


_SERIES: Dict[str, _Series] = {}


def record_timing(kind: str, seconds: float) -> None:
    series = _SERIES.get(kind)
    if series is None:
        series = _SERIES[kind] = _Series()
    series.add(float(seconds))


class timeit:
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        # failed calls are timed as well
        record_timing(self._kind, time.perf_counter() - self._t0)


def aggregates() -> List[Dict[str, Any]]:
    """One record per kind, sorted by kind; durations in seconds."""
    return [
        {"kind": kind, "n": s.n, "mean": s.mean, "std": s.std, "max": s.max}
        for kind, s in sorted(_SERIES.items())
    ]


def reset() -> None:
    _SERIES.clear()
