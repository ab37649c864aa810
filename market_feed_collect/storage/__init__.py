"""Persistence layer: market data store and retry ledger."""

from .store import MarketStore, price_bar_rows
from .retry_ledger import RetryLedger

__all__ = [
    "MarketStore",
    "RetryLedger",
    "price_bar_rows",
]
