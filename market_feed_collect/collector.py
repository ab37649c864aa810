"""Main collector module for market data collection."""

import argparse
import json
import logging
import sys
import threading
from datetime import datetime
from typing import Optional, Sequence

from market_feed_collect.analytics.engine import AnalyticsEngine, StatisticsResult, StatisticsService
from market_feed_collect.collectors.twelve_data import TwelveDataClient
from market_feed_collect.config import Settings, load_settings
from market_feed_collect.database import Database
from market_feed_collect.ingestion.daily_indicators import DailyIndicatorImporter
from market_feed_collect.ingestion.pipeline import IngestionPipeline, RunResult
from market_feed_collect.notifications import PushoverNotifier
from market_feed_collect.storage.retry_ledger import RetryLedger
from market_feed_collect.storage.store import MarketStore
from market_feed_collect.timeframes import BASE_TIMEFRAME, RunWindow
from market_feed_collect.utils.limiter import build_limiter
from market_feed_collect.utils.logging_config import setup_logging

JOBS = ("ingest", "refresh", "daily-indicators", "statistics")


class MarketDataCollector:
    """Main entry point for ingesting market data and computing statistics.

    Wires the database, provider client, notifier, ingestion pipeline and
    analytics engine from one ``Settings`` object.
    """

    def __init__(self, settings: Optional[Settings] = None, config_path: Optional[str] = None,
                 database: Optional[Database] = None, provider: Optional[TwelveDataClient] = None,
                 notifier: Optional[PushoverNotifier] = None):
        """Initialize the MarketDataCollector.

        Args:
            settings: Resolved settings. Loaded with ``load_settings`` if omitted.
            config_path: Path to a YAML configuration file, used when
                         ``settings`` is omitted.
            database: Use this database instead of one built from the settings.
            provider: Use this provider client instead of one built from the settings.
            notifier: Use this notifier instead of one built from the settings.
        """
        self.logger = logging.getLogger(__name__)
        self.settings = settings or load_settings(config_path)

        self.database = database or Database(self.settings.database_url)
        self.store = MarketStore(self.database)
        self.ledger = RetryLedger(self.database)
        self.provider = provider or TwelveDataClient(
            api_key=self.settings.twelve_data_api_key,
            base_url=self.settings.twelve_data_base_url,
            chunk_size=self.settings.chunk_size,
            timeout=self.settings.request_timeout,
            max_workers=self.settings.max_workers,
            rate_limiter=build_limiter(self.settings.requests_per_minute),
        )
        self.notifier = notifier or PushoverNotifier(self.settings.pushover_token, self.settings.pushover_user)
        self.pipeline = IngestionPipeline(
            self.store,
            self.ledger,
            self.provider,
            notifier=self.notifier,
            drain_max_attempts=self.settings.drain_max_attempts,
            drain_retry_delay=self.settings.drain_retry_delay,
            exchange_timezone=self.settings.exchange_timezone,
        )
        self.daily_importer = DailyIndicatorImporter(self.store, self.provider)
        self.statistics = StatisticsService(
            self.store,
            AnalyticsEngine(max_workers=self.settings.max_workers),
            benchmark_symbol=self.settings.benchmark_symbol,
            exchange_timezone=self.settings.exchange_timezone,
        )

    def run_ingestion(self, timeframe: str = BASE_TIMEFRAME, window: Optional[RunWindow] = None,
                      cancel_event: Optional[threading.Event] = None) -> RunResult:
        return self.pipeline.run(timeframe, window=window, cancel_event=cancel_event)

    def run_full_refresh(self, timeframe: str = BASE_TIMEFRAME, start: Optional[datetime] = None,
                         end: Optional[datetime] = None, cancel_event: Optional[threading.Event] = None) -> RunResult:
        return self.pipeline.run_full_refresh(timeframe, start=start, end=end, cancel_event=cancel_event)

    def import_daily_indicators(self, cancel_event: Optional[threading.Event] = None) -> RunResult:
        return self.daily_importer.run(cancel_event=cancel_event)

    def compute_statistics(self, as_of: Optional[datetime] = None,
                           tickers: Optional[Sequence[str]] = None) -> StatisticsResult:
        return self.statistics.compute_statistics(as_of=as_of, tickers=tickers)

    def run_job(self, name: str, timeframe: str = BASE_TIMEFRAME):
        """Run a job by its command-line name.

        Raises:
            ValueError: If the job is not known.
        """
        if name == "ingest":
            return self.run_ingestion(timeframe)
        if name == "refresh":
            return self.run_full_refresh(timeframe)
        if name == "daily-indicators":
            return self.import_daily_indicators()
        if name == "statistics":
            return self.compute_statistics()
        raise ValueError(f"Job '{name}' not known. Expected one of: {', '.join(JOBS)}")

    def close(self):
        self.database.close()


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Collect market data and compute statistics.")
    parser.add_argument("job", choices=JOBS, help="Job to run.")
    parser.add_argument("--config", help="Optional YAML configuration file.")
    parser.add_argument("--timeframe", default=BASE_TIMEFRAME, help="Provider interval for ingest and refresh.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    collector = MarketDataCollector(config_path=args.config)
    try:
        result = collector.run_job(args.job, timeframe=args.timeframe)
    finally:
        collector.close()

    if isinstance(result, StatisticsResult):
        print(json.dumps([snapshot.to_dict() for snapshot in result.snapshots], indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
