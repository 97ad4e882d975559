"""
Polling Driver - periodic, cancelable, de-duplicating request loop.

State machine per driver:
    IDLE -> REQUESTING -> IDLE   (last_outcome: SUCCESS | FAILURE)

- At most one request in flight: a new tick cancels the previous request, so
  a slow stale response can never overwrite a fresher one.
- Payloads are validated by `parse` before anything sees them; transport or
  validation failures mark the driver unavailable and leave consumers alone.
- While hidden, ticks are skipped. Becoming visible polls immediately.
- stop() cancels the timer and the in-flight request and awaits both.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from core.civil_time import utc_ms_now
from core.errors import ConfigError

logger = logging.getLogger("poller")

T = TypeVar("T")


class DriverState(str, Enum):
    IDLE = "IDLE"
    REQUESTING = "REQUESTING"


class PollOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class PollingDriver(Generic[T]):
    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        parse: Callable[[Any], T],
        interval_seconds: float,
        on_value: Optional[Callable[[T], None]] = None,
        on_unavailable: Optional[Callable[[str], None]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        if interval_seconds <= 0:
            raise ConfigError(f"{name}: poll interval must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._fetch = fetch
        self._parse = parse
        self._on_value = on_value
        self._on_unavailable = on_unavailable
        self._clock = clock or utc_ms_now

        self.state = DriverState.IDLE
        self.last_outcome: Optional[PollOutcome] = None
        self.last_value: Optional[T] = None
        self.last_error: Optional[str] = None
        self.last_success_ms: Optional[int] = None
        self.requests_started = 0
        self.requests_cancelled = 0

        self._visible = True
        self._wake = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def available(self) -> bool:
        return self.last_outcome is PollOutcome.SUCCESS

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "available": self.available,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_error": self.last_error,
            "last_success_ms": self.last_success_ms,
            "visible": self._visible,
        }

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _launch(self) -> asyncio.Task:
        previous = self._inflight
        if previous is not None and not previous.done():
            previous.cancel()
            self.requests_cancelled += 1
            logger.debug(f"[{self.name}] superseded request cancelled")
        self.requests_started += 1
        task = asyncio.create_task(self._request(), name=f"poll:{self.name}")
        self._inflight = task
        return task

    async def _request(self) -> None:
        me = asyncio.current_task()
        self.state = DriverState.REQUESTING
        try:
            payload = await self._fetch()
            value = self._parse(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._inflight is me:
                self._mark_unavailable(e)
        else:
            if self._inflight is me:
                self._accept(value)
        finally:
            if self._inflight is me:
                self.state = DriverState.IDLE

    def _accept(self, value: T) -> None:
        self.last_outcome = PollOutcome.SUCCESS
        self.last_value = value
        self.last_error = None
        self.last_success_ms = self._clock()
        if self._on_value is None:
            return
        try:
            self._on_value(value)
        except Exception as e:
            logger.error(f"[{self.name}] value handler failed: {e}")

    def _mark_unavailable(self, error: Exception) -> None:
        reason = f"{type(error).__name__}: {error}"
        if self.last_outcome is not PollOutcome.FAILURE:
            logger.warning(f"[{self.name}] unavailable, retrying next tick ({reason})")
        else:
            logger.debug(f"[{self.name}] still unavailable ({reason})")
        self.last_outcome = PollOutcome.FAILURE
        self.last_error = reason
        if self._on_unavailable is None:
            return
        try:
            self._on_unavailable(reason)
        except Exception as e:
            logger.error(f"[{self.name}] unavailable handler failed: {e}")

    async def poll_once(self) -> Optional[T]:
        """Run one request now and wait for it. None unless it succeeded."""
        task = self._launch()
        await asyncio.wait({task})
        if task.cancelled() or not self.available:
            return None
        return self.last_value

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            if self._visible:
                self._launch()
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def set_visible(self, visible: bool) -> None:
        was_visible = self._visible
        self._visible = bool(visible)
        if self._visible and not was_visible:
            logger.debug(f"[{self.name}] visible again, polling now")
            self._wake.set()

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run(), name=f"poll-loop:{self.name}")
        logger.info(f"[{self.name}] polling every {self.interval_seconds}s")

    async def stop(self) -> None:
        tasks = [t for t in (self._loop_task, self._inflight) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._inflight = None
        self.state = DriverState.IDLE
        logger.info(f"[{self.name}] stopped")
