"""Durable queue of instrument/timeframe/timestamp triples whose import failed."""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from market_feed_collect.database import Database
from market_feed_collect.errors import PersistenceError
from market_feed_collect.models import RetryLedgerEntry

logger = logging.getLogger(__name__)


class RetryLedger:
    """
    Stores at most one entry per (instrument_id, timeframe_id, timestamp).

    Inserting an existing triple and deleting a missing triple are both no-ops,
    so callers can record and resolve failures without checking first.
    """

    def __init__(self, database: Database):
        self.database = database

    def insert(self, instrument_id: int, timeframe_id: int, timestamp: datetime, reason: Optional[str] = None) -> bool:
        """
        Records a failed fetch.

        Returns:
            True if a new entry was written, False if one already existed.
        """
        try:
            with self.database.session_scope() as session:
                exists = session.scalars(
                    select(RetryLedgerEntry.id).where(
                        RetryLedgerEntry.instrument_id == instrument_id,
                        RetryLedgerEntry.timeframe_id == timeframe_id,
                        RetryLedgerEntry.timestamp == timestamp,
                    )
                ).first()
                if exists is not None:
                    logger.debug(f"Retry entry for instrument {instrument_id} at {timestamp} already queued.")
                    return False
                session.add(RetryLedgerEntry(instrument_id=instrument_id, timeframe_id=timeframe_id,
                                             timestamp=timestamp, reason=reason))
        except IntegrityError:
            # Lost a race with another writer; the unique constraint kept one entry
            logger.debug(f"Retry entry for instrument {instrument_id} at {timestamp} inserted concurrently.")
            return False
        except SQLAlchemyError as e:
            logger.error(f"Failed to queue retry for instrument {instrument_id} at {timestamp}: {e}")
            raise PersistenceError(f"Failed to queue retry entry: {e}") from e
        logger.info(f"Queued retry for instrument {instrument_id} (timeframe {timeframe_id}) at {timestamp} ({reason}).")
        return True

    def delete(self, instrument_id: int, timeframe_id: int, timestamp: datetime) -> bool:
        """Removes the entry for the triple. Returns True if one was deleted."""
        stmt = delete(RetryLedgerEntry).where(
            RetryLedgerEntry.instrument_id == instrument_id,
            RetryLedgerEntry.timeframe_id == timeframe_id,
            RetryLedgerEntry.timestamp == timestamp,
        )
        try:
            with self.database.session_scope() as session:
                deleted = session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete retry entry for instrument {instrument_id} at {timestamp}: {e}")
            raise PersistenceError(f"Failed to delete retry entry: {e}") from e
        return deleted > 0

    def list_entries(self, timeframe_id: Optional[int] = None) -> List[RetryLedgerEntry]:
        """Pending entries (all, or of one timeframe), oldest target timestamp first."""
        stmt = select(RetryLedgerEntry)
        if timeframe_id is not None:
            stmt = stmt.where(RetryLedgerEntry.timeframe_id == timeframe_id)
        stmt = stmt.order_by(RetryLedgerEntry.timestamp, RetryLedgerEntry.instrument_id)
        try:
            with self.database.session_scope() as session:
                return list(session.scalars(stmt).all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list retry entries: {e}")
            raise PersistenceError(f"Failed to list retry entries: {e}") from e

    def clear_window(self, timeframe_id: int, start: datetime, end: datetime,
                     instrument_ids: Optional[Sequence[int]] = None) -> int:
        """Deletes entries of a timeframe targeting ``start <= timestamp <= end``, optionally for some instruments."""
        stmt = delete(RetryLedgerEntry).where(
            RetryLedgerEntry.timeframe_id == timeframe_id,
            RetryLedgerEntry.timestamp >= start,
            RetryLedgerEntry.timestamp <= end,
        )
        if instrument_ids is not None:
            stmt = stmt.where(RetryLedgerEntry.instrument_id.in_(list(instrument_ids)))
        try:
            with self.database.session_scope() as session:
                deleted = session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Failed to clear retry entries between {start} and {end}: {e}")
            raise PersistenceError(f"Failed to clear retry entries: {e}") from e
        logger.info(f"Cleared {deleted} retry entries between {start} and {end}.")
        return deleted
