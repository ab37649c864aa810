"""Tests for ATR-normalized relative strength."""

from datetime import datetime, timedelta

import pandas as pd
import pytest

from market_feed_collect.analytics.relative_strength import combine_relative_strength, relative_strength

AS_OF = datetime(2024, 3, 1, 10, 0)
START = AS_OF - timedelta(minutes=10)


def window(open_price, close_price):
    """Three 5-minute bars (a 15min bucket) from ``open_price`` to ``close_price``."""
    timestamps = [START, START + timedelta(minutes=5), AS_OF]
    return pd.DataFrame(
        {
            "open": [open_price, open_price, open_price],
            "high": [max(open_price, close_price)] * 3,
            "low": [min(open_price, close_price)] * 3,
            "close": [open_price, open_price, close_price],
            "volume": [1000.0] * 3,
        },
        index=pd.DatetimeIndex(timestamps, name="timestamp"),
    )


def test_outperforming_falling_benchmark_is_positive():
    assert combine_relative_strength(0.5, -0.25) == pytest.approx(2.0)


def test_underperforming_rising_benchmark_is_negative():
    assert combine_relative_strength(-0.5, 0.25) == pytest.approx(-2.0)


def test_same_direction_is_plain_ratio():
    assert combine_relative_strength(0.5, 0.25) == pytest.approx(2.0)
    assert combine_relative_strength(-0.25, -0.5) == pytest.approx(0.5)


def test_zero_moves():
    assert combine_relative_strength(0.0, 0.0) == 0.0
    assert combine_relative_strength(0.0, 0.3) == 0.0
    assert combine_relative_strength(0.3, 0.0) is None


def test_relative_strength_from_bars():
    """+2% with ATR 0.04 against -1% with ATR 0.04: +0.5 vs -0.25."""
    bars = window(100.0, 102.0)
    benchmark = window(400.0, 396.0)

    assert relative_strength(bars, benchmark, AS_OF, "15min", 0.04, 0.04) == 2.0


def test_result_is_rounded():
    bars = window(100.0, 101.0)
    benchmark = window(100.0, 103.0)

    assert relative_strength(bars, benchmark, AS_OF, "15min", 0.01, 0.01) == 0.33


@pytest.mark.parametrize("atr,benchmark_atr", [(None, 0.04), (0.04, None), (0.0, 0.04), (0.04, 0.0)])
def test_missing_atr_is_none(atr, benchmark_atr):
    assert relative_strength(window(100.0, 102.0), window(400.0, 396.0), AS_OF, "15min", atr, benchmark_atr) is None


def test_missing_benchmark_is_none():
    assert relative_strength(window(100.0, 102.0), None, AS_OF, "15min", 0.04, 0.04) is None


def test_missing_start_bar_is_none():
    bars = window(100.0, 102.0).drop(index=START)

    assert relative_strength(bars, window(400.0, 396.0), AS_OF, "15min", 0.04, 0.04) is None


def test_benchmark_missing_start_bar_is_none():
    benchmark = window(400.0, 396.0).drop(index=START)

    assert relative_strength(window(100.0, 102.0), benchmark, AS_OF, "15min", 0.04, 0.04) is None
