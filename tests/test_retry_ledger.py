"""Tests for the retry ledger."""

from datetime import datetime

import pytest

from market_feed_collect.errors import PersistenceError

T0 = datetime(2024, 3, 1, 10, 0)
T1 = datetime(2024, 3, 1, 10, 5)


@pytest.fixture
def instruments(add_instrument):
    add_instrument(7, "MSFT")
    add_instrument(8, "NVDA")


@pytest.fixture
def five_min(store):
    return store.get_timeframe_id("5min")


@pytest.fixture
def fifteen_min(store):
    return store.get_timeframe_id("15min")


def test_insert_is_idempotent(ledger, instruments, five_min):
    """Inserting the same (instrument, timeframe, timestamp) twice leaves one entry."""
    assert ledger.insert(7, five_min, T0, reason="missing") is True
    assert ledger.insert(7, five_min, T0, reason="missing again") is False

    entries = ledger.list_entries()
    assert len(entries) == 1
    assert (entries[0].instrument_id, entries[0].timeframe_id, entries[0].timestamp, entries[0].reason) == (
        7, five_min, T0, "missing")


def test_same_instrument_different_timestamps(ledger, instruments, five_min):
    ledger.insert(7, five_min, T0)
    ledger.insert(7, five_min, T1)
    ledger.insert(8, five_min, T0)

    assert [(e.instrument_id, e.timestamp) for e in ledger.list_entries()] == [(7, T0), (8, T0), (7, T1)]


def test_entries_are_kept_per_timeframe(ledger, instruments, five_min, fifteen_min):
    assert ledger.insert(7, five_min, T0) is True
    assert ledger.insert(7, fifteen_min, T0) is True

    assert len(ledger.list_entries()) == 2
    assert [e.timeframe_id for e in ledger.list_entries(five_min)] == [five_min]

    assert ledger.delete(7, fifteen_min, T0) is True
    assert [(e.instrument_id, e.timeframe_id) for e in ledger.list_entries()] == [(7, five_min)]


def test_delete(ledger, instruments, five_min):
    ledger.insert(7, five_min, T0)

    assert ledger.delete(7, five_min, T0) is True
    assert ledger.delete(7, five_min, T0) is False
    assert ledger.list_entries() == []


def test_clear_window(ledger, instruments, five_min, fifteen_min):
    ledger.insert(7, five_min, T0)
    ledger.insert(8, five_min, T1)
    ledger.insert(8, five_min, datetime(2024, 3, 2, 10, 0))
    ledger.insert(8, fifteen_min, T0)

    assert ledger.clear_window(five_min, T0, T1) == 2
    assert [(e.timeframe_id, e.timestamp) for e in ledger.list_entries()] == [
        (fifteen_min, T0), (five_min, datetime(2024, 3, 2, 10, 0))]


def test_clear_window_for_some_instruments(ledger, instruments, five_min):
    ledger.insert(7, five_min, T0)
    ledger.insert(8, five_min, T0)

    assert ledger.clear_window(five_min, T0, T1, instrument_ids=[8]) == 1
    assert [e.instrument_id for e in ledger.list_entries()] == [7]


def test_database_errors_become_persistence_errors(ledger, database):
    database.drop_tables()

    with pytest.raises(PersistenceError):
        ledger.list_entries()
