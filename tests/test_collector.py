"""Tests for the MarketDataCollector class."""

from datetime import datetime

import pytest

from market_feed_collect import MarketDataCollector
from market_feed_collect.analytics.engine import StatisticsResult
from market_feed_collect.collector import main
from market_feed_collect.config import Settings
from market_feed_collect.timeframes import RunWindow

NOW = datetime(2024, 3, 1, 10, 0)


@pytest.fixture
def collector(database, store, client, notifier):
    settings = Settings(database_url="sqlite://", drain_retry_delay=0)
    return MarketDataCollector(settings=settings, database=database, provider=client, notifier=notifier)


def test_collector_initialization(collector):
    """Test that the MarketDataCollector wires its components."""
    assert collector.pipeline.provider is collector.provider
    assert collector.statistics.benchmark_symbol == "SPY"
    assert collector.pipeline.drain_retry_delay == 0


def test_run_ingestion(collector, market, add_instrument):
    add_instrument(1, "AAPL")
    market.add_bar("AAPL", NOW)

    result = collector.run_ingestion("5min", RunWindow(NOW, NOW))

    assert result.success is True
    assert result.imported_count == 1


def test_run_job_statistics(collector):
    result = collector.run_job("statistics")

    assert isinstance(result, StatisticsResult)
    assert result.success is True
    assert result.count == 0


def test_run_job_daily_indicators(collector, market, add_instrument):
    add_instrument(1, "AAPL")
    market.failing.add("AAPL")

    result = collector.run_job("daily-indicators")

    assert result.success is False


def test_unknown_job(collector):
    """Test running a job that does not exist raises ValueError."""
    with pytest.raises(ValueError):
        collector.run_job("nonexistent_job")


def test_cli_rejects_unknown_job():
    with pytest.raises(SystemExit):
        main(["nonexistent_job"])
