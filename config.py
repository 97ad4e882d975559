"""
Pulse - Configuration
Central configuration for the draw clock, the campaign run and the telemetry cache.

Every setting can be overridden with a PULSE_* environment variable
(entry points load .env first). load_settings() validates everything and
raises ConfigError; configuration errors are fatal at startup.
"""

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, TypeVar

from core.civil_time import ZoneInfoCivilTime
from core.errors import ConfigError
from core.models import CampaignAnchor, CivilDateTime, CutoffSpec
from core.telemetry import TelemetryConfig

T = TypeVar("T")

# ============================================================================
# DRAW CLOCK
# ============================================================================

# The day flips at 22:00 Europe/Madrid
DRAW_TIMEZONE = "Europe/Madrid"
DRAW_CUTOFF_HOUR = 22
CUTOFF_LABEL = "Madrid 22:00"
TZ_LABEL = "Madrid"

# ============================================================================
# CAMPAIGN RUN
# ============================================================================

# Day 1 starts at this wall-clock cutoff; the final draw is RUN_DAYS later
RUN_START = CivilDateTime(2025, 12, 28, 22, 0)
RUN_DAYS = 7000

# Tokens paid out per daily draw; pool value = price * POOL_SIZE
POOL_SIZE = 1_000_000

# ============================================================================
# DATA SOURCES
# ============================================================================

TOKEN_MINT = "4NGbC4RRrUjS78ooSN53Up7gSg4dGrj6F6dxpMWHbonk"
DRAW_STATUS_URL = "http://localhost:3000/api/draw/live"

# ============================================================================
# SCHEDULER CONFIGURATION (seconds)
# ============================================================================

CLOCK_TICK_SECONDS = 1.0
PRICE_POLL_SECONDS = 4.0
DRAW_POLL_SECONDS = 15.0
STATS_TICK_SECONDS = 5.0

# ============================================================================
# TELEMETRY WINDOWS
# ============================================================================

HOUR_MS = 60 * 60 * 1000
LONG_WINDOW_MS = 24 * HOUR_MS
SHORT_WINDOW_MS = HOUR_MS
MIN_SAMPLE_SPACING_MS = 10_000
SAMPLE_SLACK_COUNT = 200
SPARK_MAX_POINTS = 80

# ============================================================================
# STORAGE
# ============================================================================

DATABASE_PATH = "data/pulse.db"
# Sample buffer writes are batched; 0 writes on every sample
PERSIST_INTERVAL_MS = 15_000


def _env(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name}={raw!r} is not valid: {e}") from e


def _env_civil(name: str, default: CivilDateTime) -> CivilDateTime:
    """YYYY-MM-DDTHH:MM"""
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return default
    try:
        day_part, _, time_part = raw.replace(" ", "T").partition("T")
        year, month, day = (int(x) for x in day_part.split("-"))
        hour, minute = (int(x) for x in (time_part or "00:00").split(":")[:2])
        datetime(year, month, day, hour, minute)
        civil = CivilDateTime(year, month, day, hour, minute)
    except ValueError as e:
        raise ConfigError(f"{name}={raw!r} is not a YYYY-MM-DDTHH:MM wall-clock time") from e
    return civil


@dataclass
class PulseSettings:
    timezone_id: str = DRAW_TIMEZONE
    cutoff_hour: int = DRAW_CUTOFF_HOUR
    cutoff_label: str = CUTOFF_LABEL
    tz_label: str = TZ_LABEL
    run_start: CivilDateTime = RUN_START
    run_days: int = RUN_DAYS
    pool_size: float = POOL_SIZE
    token_mint: str = TOKEN_MINT
    draw_status_url: str = DRAW_STATUS_URL
    clock_tick_seconds: float = CLOCK_TICK_SECONDS
    price_poll_seconds: float = PRICE_POLL_SECONDS
    draw_poll_seconds: float = DRAW_POLL_SECONDS
    stats_tick_seconds: float = STATS_TICK_SECONDS
    long_window_ms: int = LONG_WINDOW_MS
    short_window_ms: int = SHORT_WINDOW_MS
    min_sample_spacing_ms: int = MIN_SAMPLE_SPACING_MS
    sample_slack_count: int = SAMPLE_SLACK_COUNT
    spark_max_points: int = SPARK_MAX_POINTS
    database_path: str = DATABASE_PATH
    persist_interval_ms: int = PERSIST_INTERVAL_MS

    @property
    def cutoff_spec(self) -> CutoffSpec:
        return CutoffSpec(timezone_id=self.timezone_id, cutoff_hour=self.cutoff_hour)

    @property
    def campaign_anchor(self) -> CampaignAnchor:
        return CampaignAnchor.from_run_days(self.run_start, self.run_days)

    def telemetry_config(self) -> TelemetryConfig:
        return TelemetryConfig(
            long_window_ms=self.long_window_ms,
            short_window_ms=self.short_window_ms,
            min_sample_spacing_ms=self.min_sample_spacing_ms,
            slack_count=self.sample_slack_count,
            spark_max_points=self.spark_max_points,
            pool_size=self.pool_size,
            persist_interval_ms=self.persist_interval_ms,
        )

    def validate(self) -> "PulseSettings":
        self.cutoff_spec
        ZoneInfoCivilTime(self.timezone_id)
        self.campaign_anchor

        for name in ("clock_tick_seconds", "price_poll_seconds", "draw_poll_seconds", "stats_tick_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        for name in ("long_window_ms", "short_window_ms", "min_sample_spacing_ms", "spark_max_points"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.short_window_ms > self.long_window_ms:
            raise ConfigError("short window must not exceed the long window")
        if self.sample_slack_count < 0:
            raise ConfigError("sample_slack_count must not be negative")
        if self.persist_interval_ms < 0:
            raise ConfigError("persist_interval_ms must not be negative")
        if self.pool_size <= 0:
            raise ConfigError("pool_size must be positive")
        if not self.token_mint:
            raise ConfigError("token_mint is required")
        return self


def load_settings() -> PulseSettings:
    """Settings from defaults + PULSE_* environment overrides, validated."""
    settings = PulseSettings(
        timezone_id=_env("PULSE_TIMEZONE", DRAW_TIMEZONE, str),
        cutoff_hour=_env("PULSE_CUTOFF_HOUR", DRAW_CUTOFF_HOUR, int),
        cutoff_label=_env("PULSE_CUTOFF_LABEL", CUTOFF_LABEL, str),
        tz_label=_env("PULSE_TZ_LABEL", TZ_LABEL, str),
        run_start=_env_civil("PULSE_RUN_START", RUN_START),
        run_days=_env("PULSE_RUN_DAYS", RUN_DAYS, int),
        pool_size=_env("PULSE_POOL_SIZE", POOL_SIZE, float),
        token_mint=_env("PULSE_TOKEN_MINT", TOKEN_MINT, str),
        draw_status_url=_env("PULSE_DRAW_STATUS_URL", DRAW_STATUS_URL, str),
        clock_tick_seconds=_env("PULSE_CLOCK_TICK_SECONDS", CLOCK_TICK_SECONDS, float),
        price_poll_seconds=_env("PULSE_PRICE_POLL_SECONDS", PRICE_POLL_SECONDS, float),
        draw_poll_seconds=_env("PULSE_DRAW_POLL_SECONDS", DRAW_POLL_SECONDS, float),
        stats_tick_seconds=_env("PULSE_STATS_TICK_SECONDS", STATS_TICK_SECONDS, float),
        long_window_ms=_env("PULSE_LONG_WINDOW_MS", LONG_WINDOW_MS, int),
        short_window_ms=_env("PULSE_SHORT_WINDOW_MS", SHORT_WINDOW_MS, int),
        min_sample_spacing_ms=_env("PULSE_MIN_SAMPLE_SPACING_MS", MIN_SAMPLE_SPACING_MS, int),
        sample_slack_count=_env("PULSE_SAMPLE_SLACK_COUNT", SAMPLE_SLACK_COUNT, int),
        spark_max_points=_env("PULSE_SPARK_MAX_POINTS", SPARK_MAX_POINTS, int),
        database_path=_env("PULSE_DATABASE_PATH", DATABASE_PATH, str),
        persist_interval_ms=_env("PULSE_PERSIST_INTERVAL_MS", PERSIST_INTERVAL_MS, int),
    )
    return settings.validate()
