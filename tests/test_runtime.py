import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
import sys

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config import PulseSettings
from core.kv_store import MemoryKeyValueStore
from core.runtime import POOL_SMOOTH_MS, PulseRuntime

NOW = int(datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)

PRICE_PAYLOAD = {
    "pairs": [
        {"chainId": "solana", "liquidity": {"usd": 1000}, "priceUsd": "0.25", "priceChange": {"h1": 1.5}},
    ]
}
DRAW_PAYLOAD = {"draw": {"closesAt": "2026-01-05T21:00:00.000Z", "status": "OPEN", "dayNumber": 9, "dayTotal": 7000}}


class FakeClock:
    def __init__(self, now_ms):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms


def _runtime(price_fetch=None, draw_fetch=None, clock=None, **overrides):
    async def fetch_price():
        return PRICE_PAYLOAD

    async def fetch_draw():
        return DRAW_PAYLOAD

    settings = PulseSettings(**overrides)
    return PulseRuntime(
        settings,
        MemoryKeyValueStore(),
        clock=clock or FakeClock(NOW),
        price_fetch=price_fetch or fetch_price,
        draw_fetch=draw_fetch or fetch_draw,
    )


def test_view_before_any_poll():
    runtime = _runtime()
    view = runtime.view()

    assert view["clock"]["countdown"] == "09:00:00"
    assert view["clock"]["session_key"] == "20260105"
    assert view["clock"]["cutoff_label"] == "Madrid 22:00"
    assert view["campaign"]["day"] == 8
    assert view["campaign"]["title"] == "Day 8/7000 (Next draw Madrid 22:00)"
    assert view["campaign"]["start_date"] == "28/12/2025"
    assert view["campaign"]["end_date"] == "26/02/2045"
    assert view["price"]["available"] is False
    assert view["price"]["pool_usd"] is None
    assert view["price"]["session_peak_usd"] is None
    assert view["draw"] == {"available": False}
    assert view["stats"]["observed_label"] == "Observed: 0m"


def test_successful_polls_feed_price_peak_and_draw():
    runtime = _runtime()

    async def run():
        await runtime.price_driver.poll_once()
        await runtime.draw_driver.poll_once()
        runtime.tick_stats()

    asyncio.run(run())
    view = runtime.view()

    assert view["price"]["available"] is True
    assert view["price"]["price_usd"] == 0.25
    assert view["price"]["change_h1"] == 1.5
    assert view["price"]["pool_usd"] == 250_000.0
    assert view["price"]["session_peak_usd"] == 250_000.0
    assert view["price"]["milestone"] == {"previous": 200_000, "next": 300_000, "fraction": 0.5}
    assert view["draw"]["available"] is True
    assert view["draw"]["phase"] == "OPEN"
    assert view["draw"]["day_number"] == 9
    assert len(runtime.telemetry.store) == 1


def test_price_outage_leaves_sample_buffer_untouched():
    responses = [PRICE_PAYLOAD, httpx.ConnectError("down")]

    async def fetch_price():
        item = responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    clock = FakeClock(NOW)
    runtime = _runtime(price_fetch=fetch_price, clock=clock)

    async def run():
        await runtime.price_driver.poll_once()
        clock.now_ms += 10_000
        await runtime.price_driver.poll_once()

    asyncio.run(run())
    view = runtime.view()

    assert len(runtime.telemetry.store) == 1
    assert view["price"]["available"] is False
    assert view["price"]["pool_usd"] is None
    # the session peak is persisted state, not a live reading
    assert view["price"]["session_peak_usd"] == 250_000.0


def test_pool_display_eases_toward_new_value():
    prices = ["0.25", "0.5"]

    async def fetch_price():
        return {"pairs": [{"chainId": "solana", "liquidity": {"usd": 1}, "priceUsd": prices.pop(0)}]}

    clock = FakeClock(NOW)
    runtime = _runtime(price_fetch=fetch_price, clock=clock)

    async def run():
        await runtime.price_driver.poll_once()
        clock.now_ms += 4_000
        await runtime.price_driver.poll_once()

    asyncio.run(run())
    start = clock.now_ms
    assert runtime.pool_display_usd(start) == 250_000.0
    midway = runtime.pool_display_usd(start + POOL_SMOOTH_MS // 2)
    assert 250_000.0 < midway < 500_000.0
    assert runtime.pool_display_usd(start + POOL_SMOOTH_MS) == 500_000.0


def test_clock_tick_advances_countdown_and_rolls_at_cutoff():
    clock = FakeClock(NOW)
    runtime = _runtime(clock=clock)
    runtime.tick_clock()
    first_cutoff = runtime.next_cutoff_ms

    clock.now_ms = first_cutoff
    view = runtime.view()
    assert view["clock"]["next_cutoff_ms"] == first_cutoff + 24 * 60 * 60 * 1000
    assert view["clock"]["session_key"] == "20260106"
    assert view["campaign"]["day"] == 9


def test_start_and_stop_leave_no_timers_behind():
    calls = {"price": 0, "draw": 0}

    async def fetch_price():
        calls["price"] += 1
        return PRICE_PAYLOAD

    async def fetch_draw():
        calls["draw"] += 1
        return DRAW_PAYLOAD

    runtime = _runtime(
        price_fetch=fetch_price,
        draw_fetch=fetch_draw,
        clock_tick_seconds=0.01,
        price_poll_seconds=0.01,
        draw_poll_seconds=0.01,
        stats_tick_seconds=0.01,
    )

    async def run():
        await runtime.start()
        await asyncio.sleep(0.1)
        assert runtime.running
        await runtime.stop()
        await asyncio.sleep(0)
        leftover = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        return leftover

    leftover = asyncio.run(run())
    assert leftover == []
    assert runtime.running is False
    assert all(not d.running and not d.in_flight for d in runtime.drivers)
    assert calls["price"] >= 2
    assert calls["draw"] >= 2
    assert runtime.view()["price"]["available"] is True


def test_visibility_reaches_every_driver():
    runtime = _runtime()
    runtime.set_visible(False)
    assert all(not d.visible for d in runtime.drivers)
    runtime.set_visible(True)
    assert all(d.visible for d in runtime.drivers)


def test_batched_samples_are_written_on_stop():
    runtime = _runtime(persist_interval_ms=60_000)
    store = runtime.telemetry.store

    async def run():
        await runtime.price_driver.poll_once()
        assert store.kv.get(store.key) is None
        await runtime.stop()

    asyncio.run(run())
    assert json.loads(store.kv.get(store.key)) == [{"t": NOW, "p": 0.25}]
