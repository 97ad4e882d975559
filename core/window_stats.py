"""
Windowed statistics over the sample buffer.

Long window: low/high/coverage. Short window: a uniformly decimated sparkline
scaled into a fixed width x height box. Pure; safe to call on any timer.
"""

from typing import List, Optional, Sequence

from core.models import DisplayStats, Sample, Sparkline

SPARK_WIDTH = 560
SPARK_HEIGHT = 54
# Minimum span so a flat window does not divide by zero
MIN_SPAN = 1e-12


def in_window(samples: Sequence[Sample], from_ms: int) -> List[Sample]:
    return [s for s in samples if s.timestamp_ms >= from_ms]


def decimate(samples: Sequence[Sample], max_points: int) -> List[Sample]:
    """Every stride-th sample, plus the last one even if the stride skips it."""
    if not samples:
        return []
    step = max(1, len(samples) // max(1, max_points))
    picked = list(samples[::step])
    if picked[-1] is not samples[-1]:
        picked.append(samples[-1])
    return picked


class WindowedStatsEngine:
    def __init__(self, width: float = SPARK_WIDTH, height: float = SPARK_HEIGHT):
        self.width = width
        self.height = height

    def build_sparkline(self, samples: Sequence[Sample]) -> Optional[Sparkline]:
        if len(samples) < 2:
            return None

        low = min(s.value for s in samples)
        high = max(s.value for s in samples)
        span = max(MIN_SPAN, high - low)

        n = len(samples)
        points = []
        for i, s in enumerate(samples):
            x = (i / (n - 1)) * self.width
            y = self.height - ((s.value - low) / span) * self.height
            points.append(f"{x:.1f},{y:.1f}")
        return Sparkline(points=" ".join(points), low=low, high=high)

    def compute(
        self,
        samples: Sequence[Sample],
        now_ms: int,
        long_window_ms: int,
        short_window_ms: int,
        max_points: int,
    ) -> DisplayStats:
        window_low = window_high = None
        coverage_ms = 0
        long_samples = in_window(samples, now_ms - long_window_ms)
        if len(long_samples) >= 2:
            window_low = min(s.value for s in long_samples)
            window_high = max(s.value for s in long_samples)
            span_ms = long_samples[-1].timestamp_ms - long_samples[0].timestamp_ms
            coverage_ms = min(long_window_ms, max(0, span_ms))

        sparkline = None
        spark_coverage_ms = 0
        short_samples = in_window(samples, now_ms - short_window_ms)
        if len(short_samples) >= 2:
            spark_coverage_ms = max(0, short_samples[-1].timestamp_ms - short_samples[0].timestamp_ms)
            sparkline = self.build_sparkline(decimate(short_samples, max_points))

        return DisplayStats(
            window_low=window_low,
            window_high=window_high,
            coverage_ms=coverage_ms,
            sparkline=sparkline,
            spark_coverage_ms=spark_coverage_ms,
        )
