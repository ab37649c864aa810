"""Relative volume: traded volume in a window against the same window on prior days."""

from datetime import datetime, timedelta
from typing import List, Optional

import pandas as pd

from market_feed_collect.analytics.buckets import (
    RVOL_DIVISOR,
    RVOL_MAX_DAYS_CHECKED,
    RVOL_TARGET_DAYS,
    window_start,
)


def window_volume(bars: pd.DataFrame, start: datetime, end: datetime) -> float:
    """Sum of volume over bars with ``start <= timestamp <= end``."""
    return float(bars.loc[start:end, "volume"].sum())


def historical_volumes(bars: pd.DataFrame, start: datetime, end: datetime,
                       target_days: int = RVOL_TARGET_DAYS,
                       max_days_checked: int = RVOL_MAX_DAYS_CHECKED) -> List[float]:
    """
    Volumes of the same time-of-day window on previous calendar days.

    Walks back one day at a time, keeping only days with trading activity,
    newest first.
    """
    volumes = []
    for days_back in range(1, max_days_checked + 1):
        offset = timedelta(days=days_back)
        volume = window_volume(bars, start - offset, end - offset)
        if volume > 0:
            volumes.append(volume)
            if len(volumes) >= target_days:
                break
    return volumes


def average_historical_volume(bars: pd.DataFrame, start: datetime, end: datetime,
                              divisor: int = RVOL_DIVISOR) -> float:
    volumes = historical_volumes(bars, start, end)
    # The oldest comparison day is left out
    kept = volumes[:-1]
    if not kept:
        return 0.0
    return sum(kept) / divisor


def relative_volume(bars: pd.DataFrame, as_of: datetime, bucket: str) -> Optional[float]:
    """
    RVOL in percent for the bucket window ending at ``as_of``.

    Args:
        bars: Base-interval bars of one instrument, indexed by timestamp, sorted.
        as_of: Timestamp of the last bar in the window.
        bucket: Statistics bucket name (e.g., "30min").

    Returns:
        ``round(today / average * 100, 2)``, or None when the window's first bar
        is missing or there is no historical volume to compare against.
    """
    start = window_start(as_of, bucket)
    if start not in bars.index:
        return None

    today_volume = window_volume(bars, start, as_of)
    average = average_historical_volume(bars, start, as_of)
    if average == 0:
        return None
    return round(today_volume / average * 100, 2)
