"""
Rolling Sample Store

Bounded, persisted time-series buffer for a single scalar stream (price).

- Loaded lazily from the key-value surface on first use.
- Trimmed to long_window + slack on every write and read.
- Hard-capped at ceil(long_window / min_spacing) + slack_count entries.
- Persisted on every write by default. With persist_interval_ms set, appends
  only mark the buffer dirty; the write happens on the next snapshot() (or
  take_pending() by a host that writes off the event loop) once the interval
  has elapsed, so memory and storage converge within one interval.
"""

import bisect
import json
import logging
import math
from typing import Callable, List, Optional

from core.civil_time import utc_ms_now
from core.errors import ConfigError
from core.kv_store import KeyValueStore
from core.models import Sample

logger = logging.getLogger("sample_store")

DEFAULT_KEY = "samples:price"
DEFAULT_SLACK_COUNT = 200
# slack_ms defaults to this many sample spacings
SLACK_SPACINGS = 3


def is_finite_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def parse_samples(raw: Optional[str]) -> List[Sample]:
    """Decode a persisted snapshot. Anything unreadable decodes to []."""
    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding unparseable sample snapshot")
        return []
    if not isinstance(decoded, list):
        logger.warning("Discarding sample snapshot that is not a list")
        return []

    out: List[Sample] = []
    for item in decoded:
        if not isinstance(item, dict):
            continue
        t, p = item.get("t"), item.get("p")
        if not (is_finite_number(t) and is_finite_number(p)):
            continue
        out.append(Sample(timestamp_ms=int(t), value=float(p)))
    out.sort(key=lambda s: s.timestamp_ms)
    return out


def _timestamp(sample: Sample) -> int:
    return sample.timestamp_ms


def dump_samples(samples: List[Sample]) -> str:
    return json.dumps([s.to_dict() for s in samples], separators=(",", ":"))


class RollingSampleStore:
    def __init__(
        self,
        kv: KeyValueStore,
        long_window_ms: int,
        min_sample_spacing_ms: int,
        slack_ms: Optional[int] = None,
        slack_count: int = DEFAULT_SLACK_COUNT,
        key: str = DEFAULT_KEY,
        clock: Optional[Callable[[], int]] = None,
        persist_interval_ms: int = 0,
    ):
        if long_window_ms <= 0 or min_sample_spacing_ms <= 0:
            raise ConfigError("Sample window and spacing must be positive")
        if slack_count < 0:
            raise ConfigError("slack_count must not be negative")
        self.kv = kv
        self.key = key
        self.long_window_ms = int(long_window_ms)
        self.min_sample_spacing_ms = int(min_sample_spacing_ms)
        self.slack_ms = int(slack_ms) if slack_ms is not None else SLACK_SPACINGS * self.min_sample_spacing_ms
        self.slack_count = int(slack_count)
        self.hard_cap = math.ceil(self.long_window_ms / self.min_sample_spacing_ms) + self.slack_count
        self._clock = clock or utc_ms_now
        self.persist_interval_ms = max(0, int(persist_interval_ms))

        self._samples: List[Sample] = []
        self._loaded = False
        self._dirty = False
        self._last_persist_ms: Optional[int] = None

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._samples = parse_samples(self.kv.get(self.key))
        self._loaded = True
        logger.debug(f"Loaded {len(self._samples)} samples from {self.key}")

    def _oldest_allowed(self, now_ms: int) -> int:
        return now_ms - self.long_window_ms - self.slack_ms

    def _trim(self, now_ms: int) -> None:
        cutoff = self._oldest_allowed(now_ms)
        start = bisect.bisect_left(self._samples, cutoff, key=_timestamp)
        if start:
            del self._samples[:start]
        overflow = len(self._samples) - self.hard_cap
        if overflow > 0:
            del self._samples[:overflow]

    def _persist(self, now_ms: int) -> None:
        self._dirty = True
        if not self.persist_interval_ms:
            self.flush()
            self._last_persist_ms = now_ms

    def _write_due(self, now_ms: int) -> bool:
        if self._last_persist_ms is None:
            return True
        return now_ms - self._last_persist_ms >= self.persist_interval_ms

    def take_pending(self, now_ms: Optional[int] = None, force: bool = False) -> Optional[str]:
        """
        Serialized buffer if a deferred write is due, else None.
        The buffer counts as persisted from here on; the caller does the write.
        """
        now_ms = self._clock() if now_ms is None else int(now_ms)
        if not self._dirty or not (force or self._write_due(now_ms)):
            return None
        self._dirty = False
        self._last_persist_ms = now_ms
        return dump_samples(self._samples)

    def flush_due(self, now_ms: Optional[int] = None) -> bool:
        payload = self.take_pending(now_ms)
        if payload is None:
            return False
        self.kv.set(self.key, payload)
        return True

    def flush(self) -> None:
        """Write pending samples to the key-value surface."""
        if not self._dirty:
            return
        self.kv.set(self.key, dump_samples(self._samples))
        self._dirty = False

    def append(self, value, now_ms: Optional[int] = None) -> None:
        if not is_finite_number(value):
            return
        now_ms = self._clock() if now_ms is None else int(now_ms)
        self._ensure_loaded()

        sample = Sample(timestamp_ms=now_ms, value=float(value))
        if self._samples and now_ms < self._samples[-1].timestamp_ms:
            # Wall clock moved backwards; keep the buffer ordered
            idx = bisect.bisect_right(self._samples, now_ms, key=_timestamp)
            self._samples.insert(idx, sample)
        else:
            self._samples.append(sample)

        self._trim(now_ms)
        self._persist(now_ms)

    def snapshot(self, now_ms: Optional[int] = None) -> List[Sample]:
        now_ms = self._clock() if now_ms is None else int(now_ms)
        self._ensure_loaded()
        self._trim(now_ms)
        self.flush_due(now_ms)
        return list(self._samples)

    def clear(self) -> None:
        self._samples = []
        self._loaded = True
        self._dirty = False
        self.kv.delete(self.key)

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._samples)
