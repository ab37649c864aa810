"""Rate limiting for market data provider calls."""

from pyrate_limiter import Limiter, Rate, Duration

# Bucket key shared by every Twelve Data request made in this process
TWELVE_DATA_LIMIT_KEY = 'twelve_data'

DEFAULT_REQUESTS_PER_MINUTE = 55


def build_limiter(requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE) -> Limiter:
    """
    Creates a limiter allowing ``requests_per_minute`` calls per minute.

    The limiter waits (up to one minute) instead of raising when the rate is
    exceeded, so concurrent chunk requests queue up behind each other.
    """
    rate = Rate(limit=requests_per_minute, interval=Duration.MINUTE)
    return Limiter(
        rate,
        raise_when_fail=False,
        max_delay=60000,
    )


limiter = build_limiter()
