from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import pytest

from app.utils.time import (
    coerce_date,
    coerce_datetime,
    local_datetime,
    local_today,
    parse_clock_time,
    resolve_timezone,
    sortable_iso,
)


class TestCoerceDatetime:
    def test_zulu_suffix(self):
        assert coerce_datetime("2025-06-02T08:00:00Z") == datetime(2025, 6, 2, 8, tzinfo=timezone.utc)

    def test_offset_is_normalised_to_utc(self):
        parsed = coerce_datetime("2025-06-02T15:00:00+07:00")
        assert parsed == datetime(2025, 6, 2, 8, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_naive_is_assumed_utc(self):
        assert coerce_datetime(datetime(2025, 6, 2, 8)).tzinfo is timezone.utc

    @pytest.mark.parametrize("value", [None, "", "yesterday", 42])
    def test_invalid_returns_none(self, value):
        assert coerce_datetime(value) is None


def test_coerce_date_accepts_datetime_strings():
    assert coerce_date("2025-06-02T23:00:00+00:00") == date(2025, 6, 2)
    assert coerce_date(datetime(2025, 6, 2, 5)) == date(2025, 6, 2)
    assert coerce_date("06/02/2025") is None


@pytest.mark.parametrize(
    "value, expected",
    [("08:00", time(8, 0)), ("17:30", time(17, 30)), ("7", time(7, 0)), ("25:00", time(8, 0)), (None, time(8, 0))],
)
def test_parse_clock_time(value, expected):
    assert parse_clock_time(value) == expected


def test_unknown_timezone_falls_back_to_utc():
    assert resolve_timezone("Mars/Olympus_Mons") is timezone.utc
    assert resolve_timezone(None) is timezone.utc


def test_local_datetime_converts_plant_clock_to_utc():
    due = local_datetime(date(2025, 6, 2), "08:00", "Asia/Ho_Chi_Minh")
    assert due == datetime(2025, 6, 2, 1, 0, tzinfo=timezone.utc)


def test_local_today_crosses_midnight():
    now = datetime(2025, 6, 1, 20, 0, tzinfo=timezone.utc)
    assert local_today("Asia/Ho_Chi_Minh", now) == date(2025, 6, 2)
    assert local_today("UTC", now) == date(2025, 6, 1)


def test_sortable_iso_orders_lexically():
    earlier = sortable_iso(datetime(2025, 6, 2, 8, 0, tzinfo=timezone.utc))
    later = sortable_iso(datetime(2025, 6, 2, 8, 0, 0, 1, tzinfo=timezone.utc))
    assert earlier < later
    assert earlier.endswith(".000000+00:00")
