"""Utility functions for the market_feed_collect package."""

from .limiter import limiter, build_limiter, TWELVE_DATA_LIMIT_KEY
from .logging_config import setup_logging

__all__ = [
    "limiter",
    "build_limiter",
    "TWELVE_DATA_LIMIT_KEY",
    "setup_logging",
]
