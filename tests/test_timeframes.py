"""Tests for run window arithmetic."""

from datetime import datetime, timezone

import pytest

from market_feed_collect.errors import InvalidTimeframeError
from market_feed_collect.timeframes import (
    RunWindow,
    backfill_window,
    current_window,
    format_provider_datetime,
    latest_completed_bar,
    validate_timeframe,
)


@pytest.mark.parametrize("now,expected", [
    (datetime(2024, 3, 1, 10, 7, 30), datetime(2024, 3, 1, 10, 0)),
    (datetime(2024, 3, 1, 10, 5), datetime(2024, 3, 1, 10, 0)),
    (datetime(2024, 3, 1, 10, 4, 59), datetime(2024, 3, 1, 9, 55)),
])
def test_latest_completed_five_minute_bar(now, expected):
    assert latest_completed_bar("5min", now=now) == expected


def test_latest_completed_hour_bar():
    assert latest_completed_bar("1h", now=datetime(2024, 3, 1, 10, 59)) == datetime(2024, 3, 1, 9, 0)


def test_aware_now_is_converted_to_exchange_time():
    # 14:07 UTC is 10:07 in New York during daylight saving time
    now = datetime(2024, 7, 1, 14, 7, tzinfo=timezone.utc)

    assert current_window("5min", now=now) == RunWindow(datetime(2024, 7, 1, 10, 0), datetime(2024, 7, 1, 10, 0))


def test_backfill_window_starts_at_session_open():
    window = backfill_window("5min", days=30, now=datetime(2024, 3, 31, 12, 3))

    assert window.start == datetime(2024, 3, 1, 9, 30)
    assert window.end == datetime(2024, 3, 31, 11, 55)


def test_window_rejects_reversed_bounds():
    with pytest.raises(ValueError):
        RunWindow(datetime(2024, 3, 1, 10, 5), datetime(2024, 3, 1, 10, 0))


def test_window_contains():
    window = RunWindow(datetime(2024, 3, 1, 9, 30), datetime(2024, 3, 1, 10, 0))

    assert window.contains(datetime(2024, 3, 1, 10, 0))
    assert not window.contains(datetime(2024, 3, 1, 10, 5))


def test_invalid_timeframe():
    with pytest.raises(InvalidTimeframeError):
        validate_timeframe("90sec")
    # Also a ValueError for callers that only know the builtin
    with pytest.raises(ValueError):
        current_window("2min")


def test_format_provider_datetime():
    assert format_provider_datetime(datetime(2024, 3, 1, 9, 5)) == "2024-03-01 09:05:00"
