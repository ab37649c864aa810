"""Volatility indicators computed from OHLC bars."""

from typing import Iterable, Optional, Union

import pandas as pd

from market_feed_collect.models import OHLCV


def bars_to_frame(bars: Iterable[OHLCV]) -> pd.DataFrame:
    """Builds a time-ordered OHLCV DataFrame indexed by timestamp."""
    frame = pd.DataFrame(
        [(bar.timestamp, bar.open, bar.high, bar.low, bar.close, bar.volume) for bar in bars],
        columns=["timestamp", "open", "high", "low", "close", "volume"],
    )
    return frame.set_index("timestamp").sort_index()


def true_range(bars: pd.DataFrame) -> pd.Series:
    """
    True range of every bar that has a previous bar.

    ``max(high - low, |high - prev_close|, |low - prev_close|)``; the first bar
    is dropped because it has no previous close.
    """
    prev_close = bars["close"].shift(1)
    ranges = pd.concat(
        [
            bars["high"] - bars["low"],
            (bars["high"] - prev_close).abs(),
            (bars["low"] - prev_close).abs(),
        ],
        axis=1,
    )
    return ranges.max(axis=1, skipna=False).iloc[1:]


def average_true_range(bars: Union[pd.DataFrame, Iterable[OHLCV]], period: Optional[int] = None) -> Optional[float]:
    """
    Arithmetic mean of the true ranges of ``bars`` (oldest first).

    Args:
        bars: DataFrame with high/low/close columns, or OHLCV bars.
        period: If given, only the last ``period`` true ranges are averaged.

    Returns:
        The ATR, or None when fewer than two bars are available.
    """
    if not isinstance(bars, pd.DataFrame):
        bars = bars_to_frame(bars)
    ranges = true_range(bars)
    if period is not None:
        ranges = ranges.iloc[-period:]
    if ranges.empty:
        return None
    return float(ranges.mean())
