"""Integration tests against a PostgreSQL database.

Set TEST_DATABASE_URL to a disposable database; every table is dropped
afterwards.
"""

import logging
import os
from datetime import datetime, timedelta

import pytest
from dotenv import load_dotenv

from market_feed_collect.database import Database
from market_feed_collect.models import OHLCV
from market_feed_collect.storage import MarketStore, RetryLedger, price_bar_rows
from market_feed_collect.storage.init_db import initialize_database
from market_feed_collect.utils.logging_config import setup_logging

# Setup logging for tests
setup_logging(logging.DEBUG)
logger = logging.getLogger(__name__)

# Load environment variables for DB connection
load_dotenv()

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")
T0 = datetime(2024, 3, 1, 10, 0)

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set"),
]


@pytest.fixture(scope="module")
def db_connection():
    """Provides a database with freshly created tables."""
    logger.info("Connecting to test database")
    db = Database(TEST_DATABASE_URL)
    initialize_database(db, drop_existing=True)
    yield db
    db.drop_tables()
    db.close()


@pytest.fixture
def store(db_connection):
    market_store = MarketStore(db_connection)
    market_store.upsert_instruments([{"symbol": "AAPL"}, {"symbol": "SPY"}])
    yield market_store
    with db_connection.engine.begin() as connection:
        connection.exec_driver_sql("DELETE FROM retry_ledger")
        connection.exec_driver_sql("DELETE FROM price_bars")
        connection.exec_driver_sql("DELETE FROM daily_indicators")


def test_upsert_price_bars_on_conflict(store):
    aapl = store.get_instrument_by_symbol("AAPL")
    timeframe_id = store.get_timeframe_id("5min")
    first = [OHLCV(T0 + timedelta(minutes=5 * i), 1.0, 2.0, 0.5, 1.5, 100.0) for i in range(3)]

    store.upsert_price_bars(price_bar_rows(aapl.id, timeframe_id, first))
    store.upsert_price_bars(price_bar_rows(aapl.id, timeframe_id, [OHLCV(T0, 1.0, 3.0, 0.5, 2.5, 200.0)]))

    history = store.get_price_history(T0, T0 + timedelta(hours=1), timeframe_id, [aapl.id])
    assert len(history) == 3
    assert history.iloc[0]["close"] == 2.5
    assert history.iloc[0]["volume"] == 200.0


def test_bulk_insert_batches(store):
    spy = store.get_instrument_by_symbol("SPY")
    timeframe_id = store.get_timeframe_id("5min")
    bars = [OHLCV(T0 + timedelta(minutes=5 * i), 1.0, 2.0, 0.5, 1.5, 100.0) for i in range(25)]

    store.bulk_insert_price_bars(price_bar_rows(spy.id, timeframe_id, bars), batch_size=10)

    assert len(store.get_price_history(T0, T0 + timedelta(days=1), timeframe_id, [spy.id])) == 25
    assert store.delete_price_bars(timeframe_id, T0, T0 + timedelta(minutes=45)) == 10


def test_retry_ledger_is_idempotent(store, db_connection):
    ledger = RetryLedger(db_connection)
    spy = store.get_instrument_by_symbol("SPY")
    timeframe_id = store.get_timeframe_id("5min")

    assert ledger.insert(spy.id, timeframe_id, T0, reason="missing") is True
    assert ledger.insert(spy.id, timeframe_id, T0, reason="missing") is False
    assert len(ledger.list_entries()) == 1
    assert ledger.delete(spy.id, timeframe_id, T0) is True


def test_daily_atr_map(store):
    aapl = store.get_instrument_by_symbol("AAPL")
    store.replace_daily_indicators([
        {"instrument_id": aapl.id, "timestamp": T0 - timedelta(days=2), "atr": 1.0},
        {"instrument_id": aapl.id, "timestamp": T0 - timedelta(days=1), "atr": 1.5},
    ])

    assert store.get_daily_atr_map() == {aapl.id: 1.5}
