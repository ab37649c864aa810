# market_feed_collect/models/__init__.py
"""Data models for the market_feed_collect package."""

from .base import Base
from .instrument import Instrument, Timeframe
from .price_bar import PriceBar
from .daily_indicator import DailyIndicator
from .retry_ledger import RetryLedgerEntry
from .ohlcv import OHLCV

__all__ = [
    "Base",
    "Instrument",
    "Timeframe",
    "PriceBar",
    "DailyIndicator",
    "RetryLedgerEntry",
    "OHLCV",
]
