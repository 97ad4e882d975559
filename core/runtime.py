"""
Pulse runtime - the hosting scheduler.

Three timer families on one asyncio loop:
1. clock tick (1s, aligned to the wall-clock second): next cutoff, countdown,
   session key, campaign progress
2. one loop per polling driver (price, draw status)
3. stats tick (5s): window statistics recomputed from the sample buffer,
   independent of how often samples arrive

view() is the read-only snapshot handed to the render surface.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from collector.draw_fetcher import fetch_draw_status, parse_draw_status
from collector.poller import PollingDriver
from collector.price_fetcher import fetch_token_pairs, read_dex_metrics
from core.campaign import CampaignProgressCalculator, format_eu_date
from core.civil_time import CivilCutoffResolver, CivilTimeSource, utc_ms_now
from core.display import format_countdown, format_coverage, milestone_progress
from core.kv_store import KeyValueStore
from core.models import CampaignProgress, DrawStatus, PriceMetrics
from core.smoothing import interpolate
from core.telemetry import TelemetryCache

logger = logging.getLogger("runtime")

HOUR_MS = 60 * 60 * 1000
# Pool value eases toward a new price over this long
POOL_SMOOTH_MS = 650


def _window_label(prefix: str, coverage_ms: int, window_ms: int) -> str:
    if coverage_ms >= window_ms:
        return f"{prefix}: {window_ms // HOUR_MS}h"
    return f"{prefix}: {format_coverage(coverage_ms)}"


class PulseRuntime:
    def __init__(
        self,
        settings,
        kv: KeyValueStore,
        clock: Optional[Callable[[], int]] = None,
        civil_time: Optional[CivilTimeSource] = None,
        price_fetch: Optional[Callable[[], Awaitable[Any]]] = None,
        draw_fetch: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.settings = settings
        self._clock = clock or utc_ms_now

        self.resolver = CivilCutoffResolver(settings.cutoff_spec, civil_time)
        self.campaign = CampaignProgressCalculator(settings.campaign_anchor, self.resolver)
        self.telemetry = TelemetryCache(
            kv, self.resolver, settings.telemetry_config(), clock=self._clock
        )

        self.price_driver: PollingDriver[PriceMetrics] = PollingDriver(
            "price",
            fetch=price_fetch or functools.partial(fetch_token_pairs, settings.token_mint),
            parse=read_dex_metrics,
            interval_seconds=settings.price_poll_seconds,
            on_value=self._on_price,
            on_unavailable=self._on_price_unavailable,
            clock=self._clock,
        )
        self.draw_driver: PollingDriver[DrawStatus] = PollingDriver(
            "draw_status",
            fetch=draw_fetch or functools.partial(fetch_draw_status, settings.draw_status_url),
            parse=parse_draw_status,
            interval_seconds=settings.draw_poll_seconds,
            on_value=self._on_draw_status,
            on_unavailable=self._on_draw_unavailable,
            clock=self._clock,
        )

        self.price: Optional[PriceMetrics] = None
        self.draw_status: Optional[DrawStatus] = None
        self.next_cutoff_ms: Optional[int] = None
        self.progress: Optional[CampaignProgress] = None
        self._pool_from: Optional[float] = None
        self._pool_to: Optional[float] = None
        self._pool_since_ms = 0
        self._tasks: List[asyncio.Task] = []

    @property
    def drivers(self) -> List[PollingDriver]:
        return [self.price_driver, self.draw_driver]

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    # ------------------------------------------------------------------
    # Driver callbacks
    # ------------------------------------------------------------------

    def _on_price(self, metrics: PriceMetrics) -> None:
        now_ms = self._clock()
        self.price = metrics
        self.telemetry.record_price(metrics.price_usd, now_ms)

        target = self.telemetry.pool_value(metrics.price_usd)
        self._pool_from = self.pool_display_usd(now_ms)
        if self._pool_from is None:
            self._pool_from = target
        self._pool_to = target
        self._pool_since_ms = now_ms

    def _on_price_unavailable(self, reason: str) -> None:
        self.price = None

    def _on_draw_status(self, status: DrawStatus) -> None:
        self.draw_status = status

    def _on_draw_unavailable(self, reason: str) -> None:
        self.draw_status = None

    def pool_display_usd(self, now_ms: Optional[int] = None) -> Optional[float]:
        if self._pool_to is None or self._pool_from is None:
            return None
        now_ms = self._clock() if now_ms is None else now_ms
        return interpolate(self._pool_from, self._pool_to, now_ms - self._pool_since_ms, POOL_SMOOTH_MS)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def tick_clock(self, now_ms: Optional[int] = None) -> None:
        now_ms = self._clock() if now_ms is None else now_ms
        self.next_cutoff_ms = self.resolver.next_cutoff_utc_ms(now_ms)
        self.progress = self.campaign.progress(now_ms)

    def tick_stats(self, now_ms: Optional[int] = None):
        return self.telemetry.recompute(now_ms)

    async def _clock_loop(self) -> None:
        interval = self.settings.clock_tick_seconds
        while True:
            try:
                self.tick_clock()
            except Exception as e:
                logger.error(f"Clock tick failed: {e}")
            # Land on the next wall-clock second so the countdown flips evenly
            into_second = (self._clock() % 1000) / 1000
            await asyncio.sleep(interval - into_second % interval)

    async def _stats_loop(self) -> None:
        while True:
            try:
                await self.telemetry.persist_pending()
                self.tick_stats()
            except Exception as e:
                logger.error(f"Stats tick failed: {e}")
            await asyncio.sleep(self.settings.stats_tick_seconds)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            return
        self.tick_clock()
        self.tick_stats()
        self._tasks = [
            asyncio.create_task(self._clock_loop(), name="pulse:clock"),
            asyncio.create_task(self._stats_loop(), name="pulse:stats"),
        ]
        for driver in self.drivers:
            driver.start()
        logger.info(
            f"Pulse runtime started ({self.settings.timezone_id} cutoff {self.settings.cutoff_hour:02d}:00)"
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        for driver in self.drivers:
            await driver.stop()
        await self.telemetry.persist_pending(force=True)
        logger.info("Pulse runtime stopped")

    def set_visible(self, visible: bool) -> None:
        for driver in self.drivers:
            driver.set_visible(visible)

    # ------------------------------------------------------------------
    # Render surface
    # ------------------------------------------------------------------

    def view(self, now_ms: Optional[int] = None) -> Dict[str, Any]:
        now_ms = self._clock() if now_ms is None else now_ms
        if self.next_cutoff_ms is None or self.progress is None:
            self.tick_clock(now_ms)
        if self.next_cutoff_ms <= now_ms:
            self.tick_clock(now_ms)

        settings = self.settings
        progress = self.progress
        stats = self.telemetry.display
        peak = self.telemetry.session_peak(now_ms)

        price = self.price
        draw_status = self.draw_status
        pool_usd = self.telemetry.pool_value(price.price_usd) if price else None
        milestone = milestone_progress(pool_usd)

        return {
            "now_ms": now_ms,
            "clock": {
                "next_cutoff_ms": self.next_cutoff_ms,
                "countdown": format_countdown(self.next_cutoff_ms - now_ms),
                "cutoff_label": settings.cutoff_label,
                "session_key": self.resolver.session_key(now_ms),
            },
            "campaign": {
                "day": progress.day,
                "days_remaining": progress.days_remaining,
                "total_days": self.campaign.total_days,
                "start_date": format_eu_date(self.campaign.anchor.start),
                "end_date": format_eu_date(self.campaign.anchor.end),
                "started": progress.started,
                "ended": progress.ended,
                "title": self.campaign.run_title(progress, settings.cutoff_label, settings.tz_label),
            },
            "price": {
                "available": self.price_driver.available,
                "price_usd": price.price_usd if price else None,
                "change_h1": price.change_h1 if price else None,
                "pool_usd": pool_usd,
                "pool_display_usd": self.pool_display_usd(now_ms) if price else None,
                "session_peak_usd": peak.value if peak else None,
                "milestone": None if milestone is None else {
                    "previous": milestone.previous,
                    "next": milestone.next,
                    "fraction": milestone.fraction,
                },
            },
            "stats": {
                **stats.to_dict(),
                "observed_label": _window_label("Observed", stats.coverage_ms, settings.long_window_ms),
                "spark_label": _window_label("Local ticks", stats.spark_coverage_ms, settings.short_window_ms),
            },
            "draw": {
                "available": self.draw_driver.available,
                **(draw_status.to_dict() if draw_status else {}),
            },
            "drivers": {d.name: d.status() for d in self.drivers},
        }
