"""Tests for cadence/core/clock.py and cadence/core/ids.py"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from cadence.core.clock import FrozenClock, SystemClock, ensure_utc
from cadence.core.ids import is_valid_ulid, new_ulid


class TestClock:
    def test_system_clock_is_aware_utc(self):
        now = SystemClock().now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)

    def test_frozen_clock_does_not_move(self):
        at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        clock = FrozenClock(at)
        assert clock.now() == at
        assert clock.now() == at

    def test_advance_with_kwargs_and_delta(self):
        clock = FrozenClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(minutes=5)
        clock.advance(timedelta(seconds=30))
        assert clock.now() == datetime(2024, 1, 1, 0, 5, 30, tzinfo=timezone.utc)

    def test_naive_datetimes_are_treated_as_utc(self):
        clock = FrozenClock(datetime(2024, 1, 1))
        assert clock.now().tzinfo == timezone.utc

    def test_ensure_utc_converts_other_zones(self):
        plus_two = timezone(timedelta(hours=2))
        value = ensure_utc(datetime(2024, 1, 1, 2, 0, tzinfo=plus_two))
        assert value == datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
        assert value.tzinfo == timezone.utc


class TestUlid:
    def test_new_ulid_is_valid(self):
        value = new_ulid()
        assert len(value) == 26
        assert is_valid_ulid(value)

    def test_ulids_sort_by_time(self):
        earlier = new_ulid(datetime(2024, 1, 1, tzinfo=timezone.utc))
        later = new_ulid(datetime(2024, 1, 2, tzinfo=timezone.utc))
        assert earlier < later

    def test_ulids_are_unique(self):
        assert len({new_ulid() for _ in range(100)}) == 100

    def test_invalid_values(self):
        assert not is_valid_ulid("short")
        assert not is_valid_ulid("01ARZ3NDEKTSV4RRFFQ69G5FA-")
        assert not is_valid_ulid("01ARZ3NDEKTSV4RRFFQ69G5FAVX")
        assert not is_valid_ulid(None)
