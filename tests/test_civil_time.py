from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.civil_time import (
    CivilCutoffResolver,
    ZoneInfoCivilTime,
    naive_utc_ms,
    next_cutoff_utc_ms,
    session_key,
)
from core.errors import ConfigError
from core.models import CivilDateTime, CutoffSpec

HOUR_MS = 60 * 60 * 1000
MADRID = CutoffSpec("Europe/Madrid", 22)


def _ms(year, month, day, hour=0, minute=0, second=0):
    return int(datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc).timestamp() * 1000)


class OffsetTableCivilTime:
    """Fixed offset table: [(utc_ms_from, offset_ms), ...] sorted by utc_ms_from."""

    def __init__(self, transitions):
        self.transitions = transitions

    def fields(self, utc_ms):
        offset = self.transitions[0][1]
        for start, off in self.transitions:
            if utc_ms >= start:
                offset = off
        local = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=utc_ms + offset)
        return CivilDateTime(local.year, local.month, local.day, local.hour, local.minute, local.second)


def _sweep(resolver, start_ms, end_ms, step_ms):
    now = start_ms
    while now < end_ms:
        yield now, resolver.next_cutoff_utc_ms(now)
        now += step_ms


def test_cutoff_before_spring_forward_uses_winter_offset():
    # 21:30 CET on the eve of the transition: tonight's 22:00 is still CET
    assert next_cutoff_utc_ms(MADRID, _ms(2025, 3, 29, 20, 30)) == _ms(2025, 3, 29, 21, 0)


def test_cutoff_after_spring_forward_uses_summer_offset():
    # 22:30 CET: the next cutoff is the following evening, already in CEST
    assert next_cutoff_utc_ms(MADRID, _ms(2025, 3, 29, 21, 30)) == _ms(2025, 3, 30, 20, 0)


def test_cutoff_across_fall_back_uses_winter_offset():
    # 22:30 CEST on the eve of fall-back: tomorrow's 22:00 is CET
    assert next_cutoff_utc_ms(MADRID, _ms(2025, 10, 25, 20, 30)) == _ms(2025, 10, 26, 21, 0)


def test_exactly_at_cutoff_returns_the_next_one():
    cutoff = _ms(2025, 6, 1, 20, 0)
    assert next_cutoff_utc_ms(MADRID, cutoff) == _ms(2025, 6, 2, 20, 0)
    assert next_cutoff_utc_ms(MADRID, cutoff - 1) == cutoff


@pytest.mark.parametrize(
    "start",
    [_ms(2025, 3, 23), _ms(2025, 10, 19)],
    ids=["spring_forward", "fall_back"],
)
def test_next_cutoff_is_strictly_future_and_never_skips_a_day(start):
    resolver = CivilCutoffResolver(MADRID)
    previous = None
    for now, nxt in _sweep(resolver, start, start + 14 * 24 * HOUR_MS, 10 * 60 * 1000):
        assert nxt > now
        assert nxt - now <= 25 * HOUR_MS
        if previous is not None:
            assert nxt >= previous
            if nxt != previous:
                assert nxt - previous in (23 * HOUR_MS, 24 * HOUR_MS, 25 * HOUR_MS)
        previous = nxt


def test_cutoff_inside_spring_forward_gap_resolves_to_later_instant():
    # 02:00 does not exist in New York on 2025-03-09
    resolver = CivilCutoffResolver(CutoffSpec("America/New_York", 2))
    assert resolver.next_cutoff_utc_ms(_ms(2025, 3, 9, 6, 30)) == _ms(2025, 3, 9, 7, 0)

    previous = None
    start = _ms(2025, 3, 5)
    for now, nxt in _sweep(resolver, start, start + 10 * 24 * HOUR_MS, 15 * 60 * 1000):
        assert nxt > now
        if previous is not None and nxt != previous:
            assert nxt - previous in (23 * HOUR_MS, 24 * HOUR_MS, 25 * HOUR_MS)
        previous = nxt


def test_session_key_flips_at_cutoff():
    assert session_key(MADRID, _ms(2025, 6, 1, 19, 59, 59)) == "20250601"
    assert session_key(MADRID, _ms(2025, 6, 1, 20, 0)) == "20250602"
    assert session_key(MADRID, _ms(2025, 6, 2, 19, 59, 59)) == "20250602"
    assert session_key(MADRID, _ms(2025, 6, 2, 20, 0)) == "20250603"


def test_session_key_is_stable_between_consecutive_cutoffs():
    resolver = CivilCutoffResolver(MADRID)
    first = _ms(2025, 10, 25, 20, 0)
    second = resolver.next_cutoff_utc_ms(first)
    assert second == _ms(2025, 10, 26, 21, 0)

    keys = set()
    now = first
    while now < second:
        keys.add(resolver.session_key(now))
        now += 7 * 60 * 1000
    keys.add(resolver.session_key(second - 1))
    assert keys == {"20251026"}
    assert resolver.session_key(second) == "20251027"


def test_resolver_runs_on_injected_offset_table():
    # Madrid-like zone: +1h, then +2h from 2025-03-30T01:00Z
    table = OffsetTableCivilTime([(0, HOUR_MS), (_ms(2025, 3, 30, 1), 2 * HOUR_MS)])
    resolver = CivilCutoffResolver(CutoffSpec("Test/Fixed", 22), civil_time=table)

    assert resolver.next_cutoff_utc_ms(_ms(2025, 3, 29, 20, 30)) == _ms(2025, 3, 29, 21, 0)
    assert resolver.next_cutoff_utc_ms(_ms(2025, 3, 29, 21, 30)) == _ms(2025, 3, 30, 20, 0)
    assert resolver.offset_ms(_ms(2025, 3, 30, 0, 59, 59)) == HOUR_MS
    assert resolver.offset_ms(_ms(2025, 3, 30, 1)) == 2 * HOUR_MS


def test_offset_ignores_sub_second_remainder():
    resolver = CivilCutoffResolver(MADRID)
    assert resolver.offset_ms(_ms(2025, 1, 1, 12) + 999) == HOUR_MS
    assert resolver.offset_ms(_ms(2025, 7, 1, 12) + 1) == 2 * HOUR_MS


def test_naive_utc_ms_reads_fields_as_utc():
    assert naive_utc_ms(CivilDateTime(2025, 12, 28, 22, 0)) == _ms(2025, 12, 28, 22, 0)


def test_wall_clock_to_utc_ms_round_trips_through_fields():
    resolver = CivilCutoffResolver(MADRID)
    utc = resolver.wall_clock_to_utc_ms(CivilDateTime(2025, 12, 28, 22, 0))
    assert utc == _ms(2025, 12, 28, 21, 0)
    assert resolver.civil_fields(utc) == CivilDateTime(2025, 12, 28, 22, 0, 0)


def test_unknown_timezone_is_config_error():
    with pytest.raises(ConfigError):
        ZoneInfoCivilTime("Mars/Olympus_Mons")
    with pytest.raises(ConfigError):
        CivilCutoffResolver(CutoffSpec("Mars/Olympus_Mons", 22))


@pytest.mark.parametrize("hour", [-1, 24, 22.5])
def test_cutoff_hour_out_of_range_is_config_error(hour):
    with pytest.raises(ConfigError):
        CutoffSpec("Europe/Madrid", hour)
