from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Optional, Dict, Any

from core.errors import ConfigError


@dataclass(frozen=True)
class CutoffSpec:
    """
    Recurring local cutoff.
    cutoff_hour is a wall-clock hour in timezone_id, never a fixed UTC offset.
    """
    timezone_id: str
    cutoff_hour: int = 22

    def __post_init__(self):
        if not isinstance(self.cutoff_hour, int) or not (0 <= self.cutoff_hour <= 23):
            raise ConfigError(f"cutoff_hour must be in 0..23, got {self.cutoff_hour!r}")
        if not self.timezone_id:
            raise ConfigError("timezone_id is required")


@dataclass(frozen=True)
class CivilDateTime:
    """Wall-clock fields as observed in a civil timezone."""
    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0
    second: int = 0

    def date(self) -> date:
        return date(self.year, self.month, self.day)

    @classmethod
    def from_date(cls, d: date, hour: int = 0, minute: int = 0, second: int = 0) -> "CivilDateTime":
        return cls(d.year, d.month, d.day, hour, minute, second)


@dataclass(frozen=True)
class CampaignAnchor:
    start: CivilDateTime
    end: CivilDateTime

    def __post_init__(self):
        try:
            start_date = self.start.date()
            end_date = self.end.date()
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid campaign anchor: {e}") from e
        if end_date < start_date:
            raise ConfigError("Campaign end precedes its start")

    @property
    def total_days(self) -> int:
        return (self.end.date() - self.start.date()).days

    @classmethod
    def from_run_days(cls, start: CivilDateTime, run_days: int) -> "CampaignAnchor":
        """End cutoff = start date + run_days calendar days, same wall-clock time."""
        if run_days <= 0:
            raise ConfigError(f"run_days must be positive, got {run_days}")
        try:
            end_date = start.date() + timedelta(days=run_days)
        except (TypeError, ValueError, OverflowError) as e:
            raise ConfigError(f"Invalid campaign anchor: {e}") from e
        return cls(
            start=start,
            end=CivilDateTime.from_date(end_date, start.hour, start.minute, start.second),
        )


@dataclass(frozen=True)
class Sample:
    timestamp_ms: int
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"t": self.timestamp_ms, "p": self.value}


@dataclass
class SessionPeak:
    session_key: str
    value: float


@dataclass(frozen=True)
class Sparkline:
    points: str
    low: float
    high: float


@dataclass(frozen=True)
class DisplayStats:
    """Derived from the sample buffer on every stats tick. Never persisted."""
    window_low: Optional[float] = None
    window_high: Optional[float] = None
    coverage_ms: int = 0
    sparkline: Optional[Sparkline] = None
    spark_coverage_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        spark = None
        if self.sparkline is not None:
            spark = {
                "points": self.sparkline.points,
                "low": self.sparkline.low,
                "high": self.sparkline.high,
            }
        return {
            "window_low": self.window_low,
            "window_high": self.window_high,
            "coverage_ms": self.coverage_ms,
            "sparkline": spark,
            "spark_coverage_ms": self.spark_coverage_ms,
        }


@dataclass(frozen=True)
class CampaignProgress:
    day: int
    days_remaining: int
    started: bool
    ended: bool


@dataclass(frozen=True)
class PriceMetrics:
    price_usd: float
    change_h1: Optional[float] = None


class DrawPhase(str, Enum):
    OPEN = "OPEN"
    LOCKED = "LOCKED"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class DrawStatus:
    closes_at_ms: int
    phase: DrawPhase
    day_number: Optional[int] = None
    day_total: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "closes_at_ms": self.closes_at_ms,
            "phase": self.phase.value,
            "day_number": self.day_number,
            "day_total": self.day_total,
        }
