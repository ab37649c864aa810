"""Relative volume, relative strength and ATR analytics."""

from .buckets import ATR_PERIOD, BUCKET_BARS, DEFAULT_BUCKETS
from .engine import AnalyticsEngine, BucketStatistics, StatisticsResult, StatisticsService, StatisticsSnapshot
from .indicators import average_true_range, true_range
from .relative_strength import combine_relative_strength, relative_strength
from .relative_volume import relative_volume

__all__ = [
    "ATR_PERIOD",
    "BUCKET_BARS",
    "DEFAULT_BUCKETS",
    "AnalyticsEngine",
    "BucketStatistics",
    "StatisticsResult",
    "StatisticsService",
    "StatisticsSnapshot",
    "average_true_range",
    "true_range",
    "combine_relative_strength",
    "relative_strength",
    "relative_volume",
]
