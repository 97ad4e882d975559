import asyncio
from pathlib import Path
import sys

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from collector.poller import DriverState, PollingDriver, PollOutcome
from core.errors import ConfigError, PayloadError


def _parse_value(payload):
    if not isinstance(payload, dict) or "v" not in payload:
        raise PayloadError("no v")
    return payload["v"]


def test_successful_poll_delivers_value():
    values = []

    async def fetch():
        return {"v": 42}

    async def run():
        driver = PollingDriver("t", fetch, _parse_value, interval_seconds=60, on_value=values.append, clock=lambda: 1234)
        result = await driver.poll_once()
        return driver, result

    driver, result = asyncio.run(run())
    assert result == 42
    assert values == [42]
    assert driver.available is True
    assert driver.state is DriverState.IDLE
    assert driver.last_outcome is PollOutcome.SUCCESS
    assert driver.last_success_ms == 1234


def test_transport_failure_marks_unavailable_without_delivering():
    values, reasons = [], []

    async def fetch():
        raise httpx.ConnectError("refused")

    async def run():
        driver = PollingDriver(
            "t", fetch, _parse_value, interval_seconds=60,
            on_value=values.append, on_unavailable=reasons.append,
        )
        result = await driver.poll_once()
        return driver, result

    driver, result = asyncio.run(run())
    assert result is None
    assert values == []
    assert len(reasons) == 1 and "ConnectError" in reasons[0]
    assert driver.available is False
    assert driver.state is DriverState.IDLE
    assert driver.status()["last_outcome"] == "FAILURE"


def test_invalid_payload_is_a_failure():
    values = []

    async def fetch():
        return {"unexpected": True}

    async def run():
        driver = PollingDriver("t", fetch, _parse_value, interval_seconds=60, on_value=values.append)
        await driver.poll_once()
        return driver

    driver = asyncio.run(run())
    assert values == []
    assert driver.last_outcome is PollOutcome.FAILURE
    assert "PayloadError" in driver.last_error


def test_recovers_after_failure():
    responses = [httpx.ReadTimeout("slow"), {"v": 1}]

    async def fetch():
        item = responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def run():
        driver = PollingDriver("t", fetch, _parse_value, interval_seconds=60)
        first = await driver.poll_once()
        second = await driver.poll_once()
        return driver, first, second

    driver, first, second = asyncio.run(run())
    assert first is None
    assert second == 1
    assert driver.available is True
    assert driver.last_error is None


def test_new_request_supersedes_in_flight_one():
    values = []
    cancelled = []

    async def run():
        calls = []

        async def fetch():
            n = len(calls)
            calls.append(n)
            if n == 0:
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled.append(n)
                    raise
                return {"v": "stale"}
            return {"v": "fresh"}

        driver = PollingDriver("t", fetch, _parse_value, interval_seconds=60, on_value=values.append)
        first = driver._launch()
        await asyncio.sleep(0)
        assert driver.in_flight

        result = await driver.poll_once()
        await asyncio.wait({first})
        return driver, first, result

    driver, first, result = asyncio.run(run())
    assert first.cancelled()
    assert cancelled == [0]
    assert result == "fresh"
    assert values == ["fresh"]
    assert driver.requests_started == 2
    assert driver.requests_cancelled == 1
    assert driver.state is DriverState.IDLE


def test_hidden_driver_skips_ticks_and_polls_when_visible_again():
    async def run():
        calls = []

        async def fetch():
            calls.append(1)
            return {"v": len(calls)}

        driver = PollingDriver("t", fetch, _parse_value, interval_seconds=60)
        driver.set_visible(False)
        driver.start()
        await asyncio.sleep(0.05)
        hidden_calls = len(calls)

        driver.set_visible(True)
        await asyncio.sleep(0.05)
        visible_calls = len(calls)
        await driver.stop()
        return driver, hidden_calls, visible_calls

    driver, hidden_calls, visible_calls = asyncio.run(run())
    assert hidden_calls == 0
    # interval is 60s, so this request came from becoming visible
    assert visible_calls == 1
    assert driver.available is True


def test_timer_polls_repeatedly_while_visible():
    async def run():
        calls = []

        async def fetch():
            calls.append(1)
            return {"v": 1}

        driver = PollingDriver("t", fetch, _parse_value, interval_seconds=0.01)
        driver.start()
        await asyncio.sleep(0.1)
        await driver.stop()
        return len(calls)

    assert asyncio.run(run()) >= 3


def test_stop_cancels_timer_and_in_flight_request():
    cancelled = []

    async def run():
        async def fetch():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise
            return {"v": 1}

        driver = PollingDriver("t", fetch, _parse_value, interval_seconds=60)
        driver.start()
        await asyncio.sleep(0.02)
        assert driver.running and driver.in_flight
        await driver.stop()
        return driver

    driver = asyncio.run(run())
    assert cancelled == [True]
    assert driver.running is False
    assert driver.in_flight is False
    assert driver.state is DriverState.IDLE
    assert driver.last_outcome is None


def test_handler_errors_do_not_break_the_driver():
    def explode(_value):
        raise RuntimeError("render failed")

    async def fetch():
        return {"v": 1}

    async def run():
        driver = PollingDriver("t", fetch, _parse_value, interval_seconds=60, on_value=explode)
        return driver, await driver.poll_once()

    driver, result = asyncio.run(run())
    assert result == 1
    assert driver.available is True


def test_non_positive_interval_is_config_error():
    async def fetch():
        return {}

    with pytest.raises(ConfigError):
        PollingDriver("t", fetch, _parse_value, interval_seconds=0)
