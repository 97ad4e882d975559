"""
Session peak tracker.

Keeps max(pool value) per logical session. The session key comes from the
cutoff resolver, so a new day simply starts an unseeded key; nothing is reset.
"""

import logging
import math
from typing import Optional

from core.kv_store import KeyValueStore
from core.sample_store import is_finite_number

logger = logging.getLogger("session_peak")

PEAK_PREFIX = "peak:"


class SessionPeakTracker:
    def __init__(self, kv: KeyValueStore, prefix: str = PEAK_PREFIX):
        self.kv = kv
        self.prefix = prefix

    def _key(self, session_key: str) -> str:
        return f"{self.prefix}{session_key}"

    def current_peak(self, session_key: str) -> Optional[float]:
        raw = self.kv.get(self._key(session_key))
        if raw is None:
            return None
        try:
            value = float(raw)
        except ValueError:
            logger.warning(f"Discarding corrupt peak for session {session_key}")
            return None
        return value if math.isfinite(value) else None

    def register_candidate(self, session_key: str, value) -> Optional[float]:
        existing = self.current_peak(session_key)
        if not is_finite_number(value):
            return existing
        peak = float(value) if existing is None else max(existing, float(value))
        if peak != existing:
            self.kv.set(self._key(session_key), repr(peak))
        return peak

    def forget_stale(self, current_key: str) -> int:
        """Drop peaks of other sessions. Stale keys are harmless; this only saves space."""
        keep = self._key(current_key)
        dropped = 0
        for key in self.kv.keys(self.prefix):
            if key != keep:
                self.kv.delete(key)
                dropped += 1
        if dropped:
            logger.debug(f"Dropped {dropped} stale session peaks")
        return dropped
