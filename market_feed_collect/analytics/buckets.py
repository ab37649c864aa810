"""Statistics buckets and the constants that drive RVOL and RS/RW.

Each bucket covers a fixed number of base 5-minute bars ending at the as-of bar.
"""

from datetime import datetime, timedelta

from market_feed_collect.errors import InvalidTimeframeError

BASE_INTERVAL = timedelta(minutes=5)

BUCKET_BARS = {
    "15min": 3,
    "30min": 6,
    "1hour": 12,
    "2hour": 24,
    "4hour": 48,
}

DEFAULT_BUCKETS = tuple(BUCKET_BARS)

# Calendar days of history loaded for a statistics run
HISTORY_DAYS = 30

# RVOL compares against up to RVOL_TARGET_DAYS non-empty days found within
# RVOL_MAX_DAYS_CHECKED calendar days, drops the oldest one and divides by
# RVOL_DIVISOR.
RVOL_TARGET_DAYS = 15
RVOL_MAX_DAYS_CHECKED = 30
RVOL_DIVISOR = 14

# Period of the daily ATR indicator
ATR_PERIOD = 14


def bucket_bars(bucket: str) -> int:
    try:
        return BUCKET_BARS[bucket]
    except KeyError:
        raise InvalidTimeframeError(
            f"Unknown statistics bucket '{bucket}'. Expected one of: {', '.join(BUCKET_BARS)}"
        ) from None


def window_start(as_of: datetime, bucket: str) -> datetime:
    """Timestamp of the first bar in the bucket window ending at ``as_of``."""
    return as_of - (bucket_bars(bucket) - 1) * BASE_INTERVAL
