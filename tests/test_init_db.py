"""Tests for database initialization."""

from market_feed_collect.storage import MarketStore
from market_feed_collect.storage.init_db import initialize_database, main
from market_feed_collect.timeframes import TIMEFRAME_MINUTES


def test_initialize_database_seeds_timeframes(database):
    initialize_database(database)

    store = MarketStore(database)
    assert len({store.get_timeframe_id(name) for name in TIMEFRAME_MINUTES}) == len(TIMEFRAME_MINUTES)


def test_initialize_database_drop_existing(database, add_instrument):
    add_instrument(1, "AAPL")

    initialize_database(database, drop_existing=True)

    assert MarketStore(database).get_active_instruments() == []


def test_main_reports_configuration_errors(monkeypatch):
    def no_settings(config_path=None):
        raise ValueError("DATABASE_URL environment variable not set")

    monkeypatch.setattr("market_feed_collect.storage.init_db.load_settings", no_settings)

    assert main([]) == 1
