"""
Civil Cutoff Resolver

Converts a recurring local cutoff (e.g. 22:00 Europe/Madrid) into UTC instants
and derives the logical session key used to bucket per-day state.

The timezone primitive is a CivilTimeSource: anything that can tell the
wall-clock fields of a UTC instant. The default source is backed by zoneinfo;
tests inject a fixed offset table instead of host timezone data.
"""

import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.errors import ConfigError
from core.models import CivilDateTime, CutoffSpec

logger = logging.getLogger("civil_time")

UTC = timezone.utc
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Offset re-evaluation passes before a wall-clock time is treated as a DST gap
_MAX_OFFSET_PASSES = 4


class CivilTimeSource(Protocol):
    def fields(self, utc_ms: int) -> CivilDateTime:
        ...


class ZoneInfoCivilTime:
    """Wall-clock fields from the IANA database via zoneinfo."""

    def __init__(self, timezone_id: str):
        try:
            self.tz = ZoneInfo(timezone_id)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Unknown timezone: {timezone_id!r}") from e
        self.timezone_id = timezone_id

    def fields(self, utc_ms: int) -> CivilDateTime:
        local = (_EPOCH + timedelta(milliseconds=utc_ms)).astimezone(self.tz)
        return CivilDateTime(
            local.year, local.month, local.day,
            local.hour, local.minute, local.second,
        )


def naive_utc_ms(civil: CivilDateTime) -> int:
    """Civil fields reinterpreted as if they were UTC."""
    return calendar.timegm(
        (civil.year, civil.month, civil.day, civil.hour, civil.minute, civil.second)
    ) * 1000


class CivilCutoffResolver:
    """
    Resolves the next cutoff instant and the current session key for a CutoffSpec.

    Offsets are never cached across days: every conversion re-evaluates the
    zone offset at the candidate instant, so a DST change between today and
    tomorrow cannot shift tomorrow's cutoff by the transition delta.
    """

    def __init__(self, spec: CutoffSpec, civil_time: Optional[CivilTimeSource] = None):
        self.spec = spec
        self.civil_time = civil_time or ZoneInfoCivilTime(spec.timezone_id)

    def civil_fields(self, now_ms: int) -> CivilDateTime:
        return self.civil_time.fields(now_ms)

    def offset_ms(self, now_ms: int) -> int:
        """Zone offset at now_ms (local minus UTC), at one-second resolution."""
        whole_second = now_ms - (now_ms % 1000)
        return naive_utc_ms(self.civil_fields(whole_second)) - whole_second

    def wall_clock_to_utc_ms(self, civil: CivilDateTime, hint_ms: Optional[int] = None) -> int:
        """
        UTC instant at which the zone's wall clock shows `civil`.

        Starts from the offset at hint_ms (or at the naive instant) and
        re-evaluates it at each candidate until stable. Times inside a
        spring-forward gap never stabilise; the later candidate wins.
        """
        naive = naive_utc_ms(civil)
        guess = naive - self.offset_ms(naive if hint_ms is None else hint_ms)
        previous = guess
        for _ in range(_MAX_OFFSET_PASSES):
            candidate = naive - self.offset_ms(guess)
            if candidate == guess:
                return guess
            previous, guess = guess, candidate
        logger.debug(f"Wall clock {civil} falls in a DST gap for {self.spec.timezone_id}")
        return max(guess, previous)

    def cutoff_on(self, local_date: date, hint_ms: Optional[int] = None) -> int:
        return self.wall_clock_to_utc_ms(
            CivilDateTime.from_date(local_date, self.spec.cutoff_hour),
            hint_ms=hint_ms,
        )

    def todays_cutoff_utc_ms(self, now_ms: int) -> int:
        """Cutoff on the local date of now_ms. May already be in the past."""
        return self.cutoff_on(self.civil_fields(now_ms).date(), hint_ms=now_ms)

    def next_cutoff_utc_ms(self, now_ms: int) -> int:
        """First cutoff strictly after now_ms."""
        local_date = self.civil_fields(now_ms).date()
        target = self.cutoff_on(local_date, hint_ms=now_ms)
        while target <= now_ms:
            local_date += timedelta(days=1)
            target = self.cutoff_on(local_date)
        return target

    def session_date(self, now_ms: int) -> date:
        """Local date whose cutoff has not passed yet."""
        fields = self.civil_fields(now_ms)
        local_date = fields.date()
        if fields.hour >= self.spec.cutoff_hour:
            local_date += timedelta(days=1)
        return local_date

    def session_key(self, now_ms: int) -> str:
        return self.session_date(now_ms).strftime("%Y%m%d")


def next_cutoff_utc_ms(spec: CutoffSpec, now_ms: int) -> int:
    return CivilCutoffResolver(spec).next_cutoff_utc_ms(now_ms)


def session_key(spec: CutoffSpec, now_ms: int) -> str:
    return CivilCutoffResolver(spec).session_key(now_ms)


def utc_ms_now() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)
