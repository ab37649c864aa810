"""Market data ingestion and analytics."""

from .collector import MarketDataCollector

__all__ = ["MarketDataCollector"]
