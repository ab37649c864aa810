"""ATR-normalized relative strength/weakness against a benchmark."""

from datetime import datetime
from typing import Optional

import pandas as pd

from market_feed_collect.analytics.buckets import window_start


def price_move(bars: pd.DataFrame, start: datetime, end: datetime) -> Optional[float]:
    """Fractional move from the open of the ``start`` bar to the close of the ``end`` bar."""
    if start not in bars.index or end not in bars.index:
        return None
    open_price = bars.at[start, "open"]
    if not open_price:
        return None
    return float((bars.at[end, "close"] - open_price) / open_price)


def combine_relative_strength(instrument: float, benchmark: float) -> Optional[float]:
    """
    Combines two ATR-normalized moves into one relative strength figure.

    Moves with the same sign are divided directly. Otherwise each side's share
    of the total magnitude is compared, and the ratio takes the sign of the
    instrument's move, so outperforming a falling benchmark is always positive.
    """
    if instrument * benchmark > 0:
        return instrument / benchmark

    total = abs(instrument) + abs(benchmark)
    if total == 0:
        return 0.0
    if benchmark == 0:
        return None
    ratio = (abs(instrument) / total) / (abs(benchmark) / total)
    return -ratio if instrument < 0 else ratio


def relative_strength(bars: pd.DataFrame, benchmark_bars: Optional[pd.DataFrame], as_of: datetime, bucket: str,
                      atr: Optional[float], benchmark_atr: Optional[float]) -> Optional[float]:
    """
    RS/RW of an instrument over the bucket window ending at ``as_of``.

    Returns None when either side lacks the window's bars or an ATR.
    """
    if benchmark_bars is None or not atr or not benchmark_atr:
        return None

    start = window_start(as_of, bucket)
    instrument_move = price_move(bars, start, as_of)
    benchmark_move = price_move(benchmark_bars, start, as_of)
    if instrument_move is None or benchmark_move is None:
        return None

    result = combine_relative_strength(instrument_move / atr, benchmark_move / benchmark_atr)
    return round(result, 2) if result is not None else None
