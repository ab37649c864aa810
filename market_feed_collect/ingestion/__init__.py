"""Ingestion of provider data into the store."""

from .daily_indicators import DailyIndicatorImporter
from .pipeline import IngestionPipeline, RunResult

__all__ = [
    "DailyIndicatorImporter",
    "IngestionPipeline",
    "RunResult",
]
