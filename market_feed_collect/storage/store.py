"""Persistence operations for instruments, price bars and daily indicators."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

import pandas as pd
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from market_feed_collect.database import Database
from market_feed_collect.errors import PersistenceError
from market_feed_collect.models import OHLCV, DailyIndicator, Instrument, PriceBar, Timeframe
from market_feed_collect.timeframes import TIMEFRAME_MINUTES, validate_timeframe

logger = logging.getLogger(__name__)

PRICE_BAR_KEY = ["instrument_id", "timeframe_id", "timestamp"]
PRICE_BAR_VALUES = ["open", "high", "low", "close", "volume"]
HISTORY_COLUMNS = ["instrument_id", "timestamp"] + PRICE_BAR_VALUES

UPSERT_BATCH_SIZE = 500
BULK_INSERT_BATCH_SIZE = 4000


def price_bar_rows(instrument_id: int, timeframe_id: int, bars: Iterable[OHLCV]) -> List[dict]:
    """Maps provider bars for one instrument to ``price_bars`` row dictionaries."""
    return [
        {
            "instrument_id": instrument_id,
            "timeframe_id": timeframe_id,
            "timestamp": bar.timestamp,
            "open": bar.open,
            "high": bar.high,
            "low": bar.low,
            "close": bar.close,
            "volume": bar.volume,
        }
        for bar in bars
    ]


def _batched(rows: Sequence[dict], size: int) -> Iterator[Sequence[dict]]:
    for offset in range(0, len(rows), size):
        yield rows[offset:offset + size]


def _dialect_insert(dialect: str):
    """Returns the dialect's ``insert`` construct, which supports ON CONFLICT."""
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")
    return dialect_insert


class MarketStore:
    """
    Reads and writes market data through a ``Database``.

    Every write runs in its own transaction. SQLAlchemy errors are logged and
    re-raised as ``PersistenceError``.
    """

    def __init__(self, database: Database):
        self.database = database
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        try:
            with self.database.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            self.logger.error(f"Database error while {action}: {e}")
            raise PersistenceError(f"Database error while {action}: {e}") from e

    # --- Instruments -----------------------------------------------------

    def get_active_instruments(self, symbols: Optional[Sequence[str]] = None) -> List[Instrument]:
        """Returns active instruments, optionally restricted to ``symbols``."""
        stmt = select(Instrument).where(Instrument.active.is_(True)).order_by(Instrument.id)
        if symbols:
            stmt = stmt.where(Instrument.symbol.in_(list(symbols)))
        with self._transaction("loading active instruments") as session:
            return list(session.scalars(stmt).all())

    def get_instrument_by_symbol(self, symbol: str) -> Optional[Instrument]:
        with self._transaction(f"loading instrument {symbol}") as session:
            return session.scalars(select(Instrument).where(Instrument.symbol == symbol)).first()

    def upsert_instruments(self, rows: Sequence[dict]) -> int:
        """
        Inserts or updates instruments keyed on ``symbol``.

        Each row needs ``symbol`` and may carry ``company_name`` and ``active``.
        """
        if not rows:
            return 0
        with self._transaction("upserting instruments") as session:
            existing = {
                instrument.symbol: instrument
                for instrument in session.scalars(
                    select(Instrument).where(Instrument.symbol.in_([r["symbol"] for r in rows]))
                )
            }
            for row in rows:
                instrument = existing.get(row["symbol"])
                if instrument is None:
                    instrument = Instrument(symbol=row["symbol"])
                    session.add(instrument)
                    existing[row["symbol"]] = instrument
                if "company_name" in row:
                    instrument.company_name = row["company_name"]
                instrument.active = row.get("active", True)
        self.logger.info(f"Upserted {len(rows)} instruments.")
        return len(rows)

    # --- Timeframes ------------------------------------------------------

    def get_timeframe_id(self, name: str) -> int:
        """Returns the id of timeframe ``name``, creating the row on first use."""
        validate_timeframe(name)
        with self._transaction(f"resolving timeframe {name}") as session:
            timeframe_id = session.scalars(select(Timeframe.id).where(Timeframe.name == name)).first()
            if timeframe_id is None:
                timeframe = Timeframe(name=name, minutes=TIMEFRAME_MINUTES[name])
                session.add(timeframe)
                session.flush()
                timeframe_id = timeframe.id
                self.logger.info(f"Created timeframe '{name}' with id {timeframe_id}")
            return timeframe_id

    def seed_timeframes(self) -> None:
        for name in TIMEFRAME_MINUTES:
            self.get_timeframe_id(name)

    # --- Price bars ------------------------------------------------------

    def upsert_price_bars(self, rows: Sequence[dict]) -> int:
        """Writes bars, overwriting prices of bars that already exist."""
        if not rows:
            return 0
        dialect_insert = _dialect_insert(self.database.dialect)
        with self._transaction("upserting price bars") as session:
            for batch in _batched(rows, UPSERT_BATCH_SIZE):
                stmt = dialect_insert(PriceBar).values(list(batch))
                stmt = stmt.on_conflict_do_update(
                    index_elements=PRICE_BAR_KEY,
                    set_={column: stmt.excluded[column] for column in PRICE_BAR_VALUES},
                )
                session.execute(stmt)
        self.logger.debug(f"Upserted {len(rows)} price bars.")
        return len(rows)

    def bulk_insert_price_bars(self, rows: Sequence[dict], batch_size: int = BULK_INSERT_BATCH_SIZE) -> int:
        """Plain batched insert; callers must clear conflicting bars first."""
        if not rows:
            return 0
        with self._transaction("bulk inserting price bars") as session:
            for batch in _batched(rows, batch_size):
                session.execute(insert(PriceBar), list(batch))
        self.logger.info(f"Bulk inserted {len(rows)} price bars.")
        return len(rows)

    def delete_price_bars(self, timeframe_id: int, start: datetime, end: datetime,
                          instrument_ids: Optional[Sequence[int]] = None) -> int:
        """Deletes bars of a timeframe with ``start <= timestamp <= end``, for all or only ``instrument_ids``."""
        stmt = delete(PriceBar).where(
            PriceBar.timeframe_id == timeframe_id,
            PriceBar.timestamp >= start,
            PriceBar.timestamp <= end,
        )
        if instrument_ids is not None:
            stmt = stmt.where(PriceBar.instrument_id.in_(list(instrument_ids)))
        with self._transaction("deleting price bars") as session:
            deleted = session.execute(stmt).rowcount
        self.logger.info(f"Deleted {deleted} price bars between {start} and {end}.")
        return deleted

    def get_price_history(
        self,
        start: datetime,
        end: datetime,
        timeframe_id: int,
        instrument_ids: Optional[Sequence[int]] = None,
    ) -> pd.DataFrame:
        """
        Reads bars in ``[start, end]`` as a DataFrame.

        Columns: instrument_id, timestamp, open, high, low, close, volume,
        ordered by instrument and time.
        """
        stmt = (
            select(*[getattr(PriceBar, column) for column in HISTORY_COLUMNS])
            .where(
                PriceBar.timeframe_id == timeframe_id,
                PriceBar.timestamp >= start,
                PriceBar.timestamp <= end,
            )
            .order_by(PriceBar.instrument_id, PriceBar.timestamp)
        )
        if instrument_ids is not None:
            stmt = stmt.where(PriceBar.instrument_id.in_(list(instrument_ids)))
        try:
            with self.database.engine.connect() as connection:
                history = pd.read_sql(stmt, connection, parse_dates=["timestamp"])
        except SQLAlchemyError as e:
            self.logger.error(f"Database error while reading price history: {e}")
            raise PersistenceError(f"Database error while reading price history: {e}") from e
        if history.empty:
            return pd.DataFrame(columns=HISTORY_COLUMNS)
        return history

    # --- Daily indicators ------------------------------------------------

    def replace_daily_indicators(self, rows: Sequence[dict]) -> int:
        """Deletes every daily indicator and inserts ``rows`` in one transaction."""
        with self._transaction("replacing daily indicators") as session:
            session.execute(delete(DailyIndicator))
            if rows:
                session.execute(insert(DailyIndicator), list(rows))
        self.logger.info(f"Replaced daily indicators with {len(rows)} rows.")
        return len(rows)

    def get_daily_atr_map(self) -> Dict[int, Optional[float]]:
        """Returns the most recent ATR for each instrument."""
        latest = (
            select(DailyIndicator.instrument_id, func.max(DailyIndicator.timestamp).label("timestamp"))
            .group_by(DailyIndicator.instrument_id)
            .subquery()
        )
        stmt = select(DailyIndicator.instrument_id, DailyIndicator.atr).join(
            latest,
            (DailyIndicator.instrument_id == latest.c.instrument_id)
            & (DailyIndicator.timestamp == latest.c.timestamp),
        )
        with self._transaction("loading daily ATR values") as session:
            return {instrument_id: atr for instrument_id, atr in session.execute(stmt)}
