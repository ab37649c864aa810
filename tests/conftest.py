"""Shared fixtures: an in-memory database and a fake Twelve Data endpoint."""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

import pytest
import requests

from market_feed_collect.collectors.twelve_data import TwelveDataClient
from market_feed_collect.database import Database
from market_feed_collect.models import Instrument
from market_feed_collect.storage import MarketStore, RetryLedger
from market_feed_collect.timeframes import format_provider_datetime
from market_feed_collect.utils.limiter import build_limiter
from market_feed_collect.utils.logging_config import setup_logging

# Setup logging for tests
setup_logging(logging.DEBUG)


class FakeResponse:
    def __init__(self, body, status_code: int = 200):
        self.body = body
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    """Stands in for ``requests.Session``; every post is answered by ``handler(payload)``."""

    def __init__(self, handler):
        self.handler = handler
        self.calls: List[dict] = []
        self._lock = threading.Lock()

    def post(self, url, params=None, json=None, data=None, timeout=None):
        with self._lock:
            self.calls.append({"url": url, "params": params, "json": json, "data": data, "timeout": timeout})
        return self.handler(json if json is not None else data)


def bar_values(timestamp: datetime, open=100.0, high=101.0, low=99.0, close=100.5, volume=1000.0) -> dict:
    """One provider value object; the provider sends every field as a string."""
    return {
        "datetime": format_provider_datetime(timestamp),
        "open": str(open),
        "high": str(high),
        "low": str(low),
        "close": str(close),
        "volume": str(volume),
    }


class FakeMarket:
    """
    In-memory ``complex_data`` endpoint.

    Serves the stored bars of each requested symbol that fall inside
    ``start_date``/``end_date`` (newest first, at most ``outputsize``). Symbols in
    ``failing`` come back with null values; chunks containing a symbol in
    ``broken`` get an HTTP 500.
    """

    def __init__(self):
        self.bars: Dict[str, List[dict]] = {}
        self.failing = set()
        self.broken = set()
        self.payloads: List[dict] = []
        self._lock = threading.Lock()

    def add_bar(self, symbol: str, timestamp: datetime, **values):
        self.bars.setdefault(symbol, []).append(bar_values(timestamp, **values))

    def __call__(self, payload: dict) -> FakeResponse:
        with self._lock:
            self.payloads.append(payload)
        if self.broken & set(payload["symbols"]):
            return FakeResponse({"status": "error"}, status_code=500)

        start = payload.get("start_date")
        end = payload.get("end_date")
        data = []
        for symbol in payload["symbols"]:
            meta = {"symbol": symbol, "interval": payload["intervals"][0]}
            if symbol in self.failing:
                data.append({"meta": meta, "values": None, "status": "error", "message": "No data"})
                continue
            values = [
                value for value in self.bars.get(symbol, [])
                if (start is None or value["datetime"] >= start) and (end is None or value["datetime"] <= end)
            ]
            values = sorted(values, key=lambda value: value["datetime"], reverse=True)[:payload["outputsize"]]
            data.append({"meta": meta, "values": values, "status": "ok"})
        return FakeResponse({"data": data, "status": "ok"})


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: List[dict] = []

    def send_notification(self, message, title=None, url=None, url_title=None, priority=None):
        if self.fail:
            raise RuntimeError("notifier down")
        self.messages.append({"message": message, "title": title})
        return True


@pytest.fixture
def database():
    """Provides a fresh in-memory SQLite database with all tables."""
    db = Database("sqlite://")
    db.create_tables()
    yield db
    db.close()


@pytest.fixture
def store(database):
    market_store = MarketStore(database)
    market_store.seed_timeframes()
    return market_store


@pytest.fixture
def ledger(database):
    return RetryLedger(database)


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def make_client(market):
    """Builds a TwelveDataClient talking to the fake market."""

    def factory(chunk_size: int = 5, handler=None, max_workers: Optional[int] = None):
        session = FakeSession(handler or market)
        client = TwelveDataClient(
            api_key="test-key",
            base_url="https://api.example.test",
            chunk_size=chunk_size,
            max_workers=max_workers,
            session=session,
            rate_limiter=build_limiter(10000),
        )
        return client

    return factory


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def add_instrument(database):
    """Inserts an instrument with a fixed id."""

    def insert(instrument_id: int, symbol: str, active: bool = True) -> Instrument:
        with database.session_scope() as session:
            instrument = Instrument(id=instrument_id, symbol=symbol, company_name=f"{symbol} Inc.", active=active)
            session.add(instrument)
        return instrument

    return insert


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def fake_session():
    """Factory for sessions whose posts return ``handler(payload)``."""
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse
