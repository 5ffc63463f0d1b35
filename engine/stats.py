"""
Network measurement statistics.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
Everything here is deterministic and easy to unit-test.
"""
from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from .models import UNREACHABLE


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LatencyStats:
    """Aggregated latency statistics computed from a list of samples."""

    samples: List[float] = field(default_factory=list)
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    stddev: float = 0.0
    variance: float = 0.0
    count: int = 0

    def calculate(self) -> None:
        if not self.samples:
            return
        self.count = len(self.samples)
        self.min = min(self.samples)
        self.max = max(self.samples)
        self.mean = mean(self.samples)
        self.variance = variance(self.samples)
        self.stddev = math.sqrt(self.variance)

    def describe(self) -> str:
        """One-line summary used by debug logging."""
        data = ",".join(f"{s:g}" for s in self.samples)
        return (
            f"avg: {self.mean:.3f} min: {self.min:g} max: {self.max:g} "
            f"sd: {self.stddev:.2f} var: {self.variance:.2f} "
            f"count: {self.count} data: [{data}]"
        )


def summarize(samples: Iterable[float]) -> LatencyStats:
    stats = LatencyStats(samples=list(samples))
    stats.calculate()
    return stats


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def mean(samples: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not samples:
        return 0.0
    return statistics.fmean(samples)


def variance(samples: Sequence[float]) -> float:
    """Sample variance (divisor ``n - 1``); 0.0 when ``n <= 1``."""
    if len(samples) <= 1:
        return 0.0
    return statistics.variance(samples)


def stddev(samples: Sequence[float]) -> float:
    return math.sqrt(variance(samples))


def remove_upper_outliers(samples: Sequence[float]) -> List[float]:
    """
    Drop latency spikes more than one standard deviation above the mean.

    Non-positive samples are failed probes and are discarded before the
    mean and deviation are computed.  Samples below the mean are always
    kept: only the upper tail is trimmed.
    """
    valid = [s for s in samples if s > 0]
    if not valid:
        return []

    avg = mean(valid)
    sd = stddev(valid)
    return [s for s in valid if s - avg <= sd]


def filtered_mean(samples: Sequence[float]) -> float:
    """
    Mean of *samples* after upper-outlier rejection.

    Falls back to the mean of the positive samples if filtering leaves
    nothing, and to ``UNREACHABLE`` when there are no positive samples.
    """
    kept = remove_upper_outliers(samples)
    if kept:
        return mean(kept)

    valid = [s for s in samples if s > 0]
    return mean(valid) if valid else UNREACHABLE


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(kbps: float) -> str:
    """Human-readable speed string from kilobits per second."""
    if kbps >= 1_000_000:
        return f"{kbps / 1_000_000:.2f} Gbps"
    if kbps >= 1000:
        return f"{kbps / 1000:.2f} Mbps"
    return f"{kbps:.0f} kbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if math.isinf(latency_ms):
        return "ERROR"
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"
