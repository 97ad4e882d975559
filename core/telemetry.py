"""
Telemetry cache - the single owner of the sample buffer and the session peaks.

Constructed once per hosting process with explicit config and passed to the
runtime and the drivers by reference.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.civil_time import CivilCutoffResolver, utc_ms_now
from core.kv_store import KeyValueStore
from core.models import DisplayStats, SessionPeak
from core.sample_store import RollingSampleStore, is_finite_number
from core.session_peak import SessionPeakTracker
from core.window_stats import WindowedStatsEngine

logger = logging.getLogger("telemetry")

HOUR_MS = 60 * 60 * 1000


@dataclass
class TelemetryConfig:
    long_window_ms: int = 24 * HOUR_MS
    short_window_ms: int = HOUR_MS
    min_sample_spacing_ms: int = 10_000
    slack_count: int = 200
    spark_max_points: int = 80
    pool_size: float = 1_000_000
    samples_key: str = "samples:price"
    persist_interval_ms: int = 0


class TelemetryCache:
    def __init__(
        self,
        kv: KeyValueStore,
        resolver: CivilCutoffResolver,
        config: Optional[TelemetryConfig] = None,
        clock: Optional[Callable[[], int]] = None,
        engine: Optional[WindowedStatsEngine] = None,
    ):
        self.config = config or TelemetryConfig()
        self.resolver = resolver
        self._clock = clock or utc_ms_now
        self.store = RollingSampleStore(
            kv,
            long_window_ms=self.config.long_window_ms,
            min_sample_spacing_ms=self.config.min_sample_spacing_ms,
            slack_count=self.config.slack_count,
            key=self.config.samples_key,
            clock=self._clock,
            persist_interval_ms=self.config.persist_interval_ms,
        )
        self.peaks = SessionPeakTracker(kv)
        self.engine = engine or WindowedStatsEngine()
        self.display = DisplayStats()
        self._session_key: Optional[str] = None

    def _now(self, now_ms: Optional[int]) -> int:
        return self._clock() if now_ms is None else int(now_ms)

    def pool_value(self, price_usd: Optional[float]) -> Optional[float]:
        if not is_finite_number(price_usd):
            return None
        return price_usd * self.config.pool_size

    def record_price(self, price_usd, now_ms: Optional[int] = None) -> Optional[float]:
        """Append a price sample and fold its pool value into today's peak."""
        if not is_finite_number(price_usd):
            return None
        now_ms = self._now(now_ms)
        self.store.append(price_usd, now_ms)
        return self.register_pool_value(self.pool_value(price_usd), now_ms)

    def register_pool_value(self, value, now_ms: Optional[int] = None) -> Optional[float]:
        now_ms = self._now(now_ms)
        key = self.resolver.session_key(now_ms)
        if key != self._session_key:
            if self._session_key is not None:
                logger.info(f"Session rolled {self._session_key} -> {key}")
                self.peaks.forget_stale(key)
            self._session_key = key
        return self.peaks.register_candidate(key, value)

    def session_peak(self, now_ms: Optional[int] = None) -> SessionPeak | None:
        key = self.resolver.session_key(self._now(now_ms))
        value = self.peaks.current_peak(key)
        if value is None:
            return None
        return SessionPeak(session_key=key, value=value)

    async def persist_pending(self, now_ms: Optional[int] = None, force: bool = False) -> bool:
        """Write a due sample snapshot from a worker thread, off the event loop."""
        payload = self.store.take_pending(self._now(now_ms), force=force)
        if payload is None:
            return False
        await asyncio.to_thread(self.store.kv.set, self.store.key, payload)
        return True

    def recompute(self, now_ms: Optional[int] = None) -> DisplayStats:
        now_ms = self._now(now_ms)
        self.display = self.engine.compute(
            self.store.snapshot(now_ms),
            now_ms,
            long_window_ms=self.config.long_window_ms,
            short_window_ms=self.config.short_window_ms,
            max_points=self.config.spark_max_points,
        )
        return self.display
