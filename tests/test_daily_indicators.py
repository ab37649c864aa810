"""Tests for the daily ATR import."""

import threading
from datetime import datetime, timedelta

import pytest

from market_feed_collect.ingestion.daily_indicators import DailyIndicatorImporter

FIRST_DAY = datetime(2024, 3, 1)


def add_daily_bars(market, symbol, count, low=9.0, high=11.0):
    for i in range(count):
        middle = (low + high) / 2
        market.add_bar(symbol, FIRST_DAY + timedelta(days=i), open=middle, high=high, low=low, close=middle)


@pytest.fixture
def importer(store, client):
    return DailyIndicatorImporter(store, client)


def test_import_computes_atr(importer, store, market, add_instrument):
    add_instrument(1, "AAPL")
    add_instrument(529, "SPY")
    add_daily_bars(market, "AAPL", 20)
    add_daily_bars(market, "SPY", 20, low=390.0, high=410.0)

    result = importer.run()

    assert result.success is True
    assert result.imported_count == 2
    assert store.get_daily_atr_map() == {1: pytest.approx(2.0), 529: pytest.approx(20.0)}
    payload = market.payloads[0]
    assert payload["intervals"] == ["1day"]
    assert payload["outputsize"] == 15


def test_instruments_without_data_are_skipped(importer, store, market, add_instrument):
    add_instrument(1, "AAPL")
    add_instrument(2, "IPO")
    add_instrument(3, "GONE")
    add_daily_bars(market, "AAPL", 15)
    add_daily_bars(market, "IPO", 1)
    market.failing.add("GONE")

    result = importer.run()

    assert result.success is True
    assert result.healthy is False
    assert sorted(result.failed_symbols) == ["GONE", "IPO"]
    assert list(store.get_daily_atr_map()) == [1]


def test_existing_indicators_kept_when_nothing_arrives(importer, store, market, add_instrument):
    add_instrument(1, "AAPL")
    store.replace_daily_indicators([{"instrument_id": 1, "timestamp": FIRST_DAY, "atr": 3.0}])
    market.failing.add("AAPL")

    result = importer.run()

    assert result.success is False
    assert store.get_daily_atr_map() == {1: 3.0}


def test_cancelled_import(importer, store, market, add_instrument):
    add_instrument(1, "AAPL")
    add_daily_bars(market, "AAPL", 15)
    cancel_event = threading.Event()
    cancel_event.set()

    result = importer.run(cancel_event=cancel_event)

    assert result.success is False
    assert result.error == "cancelled"
    assert store.get_daily_atr_map() == {}
