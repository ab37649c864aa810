from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class OHLCV:
    """One bar as returned by the data provider, before it is tied to an instrument."""
    timestamp: datetime    # Bar open time in exchange local time
    open: float
    high: float
    low: float
    close: float
    volume: float
