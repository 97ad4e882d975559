"""
Campaign progress - which day of the run it is.

Day 1 starts at the run's start cutoff and the counter advances once per
cutoff crossing, using the same offset-aware conversion as the resolver.
"""

from datetime import date, timedelta

from core.civil_time import CivilCutoffResolver
from core.errors import ConfigError
from core.models import CampaignAnchor, CampaignProgress, CivilDateTime


def _serial_day(d: date) -> int:
    return d.toordinal()


def format_eu_datetime(civil: CivilDateTime, tz_label: str = "") -> str:
    """DD/MM/YYYY HH:MM, optionally followed by '(label)'."""
    text = f"{civil.day:02d}/{civil.month:02d}/{civil.year} {civil.hour:02d}:{civil.minute:02d}"
    return f"{text} ({tz_label})" if tz_label else text


def format_eu_date(civil: CivilDateTime) -> str:
    return f"{civil.day:02d}/{civil.month:02d}/{civil.year}"


class CampaignProgressCalculator:
    def __init__(self, anchor: CampaignAnchor, resolver: CivilCutoffResolver):
        if anchor.total_days <= 0:
            raise ConfigError("Campaign must span at least one day")
        self.anchor = anchor
        self.resolver = resolver

    @property
    def total_days(self) -> int:
        return self.anchor.total_days

    def start_utc_ms(self) -> int:
        return self.resolver.wall_clock_to_utc_ms(self.anchor.start)

    def end_utc_ms(self) -> int:
        return self.resolver.wall_clock_to_utc_ms(self.anchor.end)

    def anchor_date(self, now_ms: int) -> date:
        """Local date of the last cutoff at or before now_ms."""
        today = self.resolver.civil_fields(now_ms).date()
        if now_ms >= self.resolver.todays_cutoff_utc_ms(now_ms):
            return today
        return today - timedelta(days=1)

    def progress(self, now_ms: int) -> CampaignProgress:
        started = now_ms >= self.start_utc_ms()
        ended = now_ms >= self.end_utc_ms()

        day = 0
        if started:
            diff = _serial_day(self.anchor_date(now_ms)) - _serial_day(self.anchor.start.date())
            day = max(1, diff + 1)
        day = max(0, min(self.total_days, day))

        return CampaignProgress(
            day=day,
            days_remaining=max(0, self.total_days - day),
            started=started,
            ended=ended,
        )

    def run_title(self, progress: CampaignProgress, cutoff_label: str, tz_label: str = "") -> str:
        if progress.ended:
            return f"Final Draw live ({format_eu_datetime(self.anchor.end, tz_label)})"
        if progress.started:
            return f"Day {progress.day}/{self.total_days} (Next draw {cutoff_label})"
        return f"Run starts {format_eu_datetime(self.anchor.start, tz_label)}"
