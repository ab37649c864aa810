"""Timeframe names and run window arithmetic."""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional

import pandas as pd

from market_feed_collect.errors import InvalidTimeframeError

# Interval names as the provider spells them, mapped to their length in minutes
TIMEFRAME_MINUTES = {
    "1min": 1,
    "5min": 5,
    "15min": 15,
    "30min": 30,
    "45min": 45,
    "1h": 60,
    "2h": 120,
    "4h": 240,
    "1day": 1440,
}

BASE_TIMEFRAME = "5min"
DEFAULT_EXCHANGE_TIMEZONE = "America/New_York"
SESSION_OPEN = time(9, 30)

PROVIDER_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class RunWindow:
    """Inclusive [start, end] range of bar timestamps requested in one run."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Window start {self.start} is after end {self.end}")

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp <= self.end


def validate_timeframe(timeframe: str) -> str:
    if timeframe not in TIMEFRAME_MINUTES:
        raise InvalidTimeframeError(
            f"Unknown timeframe '{timeframe}'. Expected one of: {', '.join(TIMEFRAME_MINUTES)}"
        )
    return timeframe


def timeframe_delta(timeframe: str) -> timedelta:
    return timedelta(minutes=TIMEFRAME_MINUTES[validate_timeframe(timeframe)])


def exchange_now(now: Optional[datetime], tz: str) -> pd.Timestamp:
    """Returns the wall-clock time at the exchange as a naive timestamp."""
    if now is None:
        return pd.Timestamp.now(tz=tz).tz_localize(None)
    stamp = pd.Timestamp(now)
    if stamp.tzinfo is not None:
        stamp = stamp.tz_convert(tz).tz_localize(None)
    return stamp


def latest_completed_bar(timeframe: str, now: Optional[datetime] = None,
                         tz: str = DEFAULT_EXCHANGE_TIMEZONE) -> datetime:
    """
    Timestamp of the most recent bar that has finished forming.

    Floors the exchange wall-clock to the timeframe boundary and steps back one
    full interval, so the bar still being built is never requested.
    """
    delta = timeframe_delta(timeframe)
    floored = exchange_now(now, tz).floor(f"{TIMEFRAME_MINUTES[timeframe]}min")
    return (floored - delta).to_pydatetime()


def current_window(timeframe: str, now: Optional[datetime] = None,
                   tz: str = DEFAULT_EXCHANGE_TIMEZONE) -> RunWindow:
    """Single-bar window targeting the latest completed bar."""
    bar = latest_completed_bar(timeframe, now=now, tz=tz)
    return RunWindow(start=bar, end=bar)


def backfill_window(timeframe: str, days: int = 30, now: Optional[datetime] = None,
                    tz: str = DEFAULT_EXCHANGE_TIMEZONE) -> RunWindow:
    """Window from the session open ``days`` back up to the latest completed bar."""
    end = latest_completed_bar(timeframe, now=now, tz=tz)
    start_day = (exchange_now(now, tz) - pd.Timedelta(days=days)).date()
    start = datetime.combine(start_day, SESSION_OPEN)
    return RunWindow(start=min(start, end), end=end)


def format_provider_datetime(value: datetime) -> str:
    return value.strftime(PROVIDER_DATETIME_FORMAT)
