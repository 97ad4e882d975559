"""
Display formatting for the render surface: countdown, coverage, USD amounts
and pool-value milestones.
"""

import math
from dataclasses import dataclass
from typing import Optional

MILESTONES = (
    5, 10, 15, 20, 25, 50, 75, 100, 150, 200, 300, 400, 500, 750, 1_000, 1_500, 2_000,
    3_000, 4_000, 5_000, 7_500, 10_000, 15_000, 20_000, 30_000, 40_000, 50_000, 75_000,
    100_000, 150_000, 200_000, 300_000, 400_000, 500_000, 750_000, 1_000_000, 1_500_000,
    2_000_000, 3_000_000, 5_000_000, 10_000_000,
)


def clamp(n: float, low: float, high: float) -> float:
    return max(low, min(high, n))


def format_countdown(ms: float) -> str:
    """HH:MM:SS, hours unbounded. Past deadlines read 00:00:00."""
    total = max(0, int(ms // 1000))
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_coverage(ms: float) -> str:
    total_min = max(0, int(ms // 60_000))
    hours, minutes = divmod(total_min, 60)
    if hours <= 0:
        return f"{minutes}m"
    return f"{hours}h {minutes:02d}m"


def format_usd(value: Optional[float]) -> str:
    if value is None or not math.isfinite(value):
        return "$0.00"
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


@dataclass(frozen=True)
class MilestoneProgress:
    previous: float
    next: Optional[float]
    fraction: float


def milestone_progress(value: Optional[float]) -> Optional[MilestoneProgress]:
    """Where a pool value sits between the milestones around it."""
    if value is None or not math.isfinite(value):
        return None
    nxt = next((m for m in MILESTONES if value < m), None)
    reached = [m for m in MILESTONES if value >= m]
    prev = reached[-1] if reached else 0
    if nxt is None or nxt == prev:
        return MilestoneProgress(previous=prev, next=nxt, fraction=1.0)
    return MilestoneProgress(
        previous=prev,
        next=nxt,
        fraction=clamp((value - prev) / (nxt - prev), 0.0, 1.0),
    )
