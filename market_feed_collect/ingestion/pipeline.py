"""Batch ingestion of provider bars with a durable retry ledger."""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import backoff

from market_feed_collect.collectors.twelve_data import SeriesBySymbol, TwelveDataClient
from market_feed_collect.errors import PersistenceError, RunCancelledError
from market_feed_collect.models import Instrument, RetryLedgerEntry
from market_feed_collect.notifications import PushoverNotifier
from market_feed_collect.storage.retry_ledger import RetryLedger
from market_feed_collect.storage.store import MarketStore, price_bar_rows
from market_feed_collect.timeframes import (
    BASE_TIMEFRAME,
    DEFAULT_EXCHANGE_TIMEZONE,
    RunWindow,
    backfill_window,
    current_window,
    timeframe_delta,
    validate_timeframe,
)

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_MAX_ATTEMPTS = 3
DEFAULT_DRAIN_RETRY_DELAY = 30.0
FULL_REFRESH_OUTPUT_SIZE = 5000

# One lock per timeframe, shared by every pipeline in the process
_RUN_LOCKS: Dict[str, threading.Lock] = {}
_RUN_LOCKS_GUARD = threading.Lock()


def _run_lock(timeframe: str) -> threading.Lock:
    with _RUN_LOCKS_GUARD:
        return _RUN_LOCKS.setdefault(timeframe, threading.Lock())


@dataclass
class RunResult:
    """Outcome of one ingestion, refresh or daily-indicator run."""
    success: bool
    imported_count: int = 0
    failed_symbols: List[str] = field(default_factory=list)
    recovered_count: int = 0
    pending_retries: int = 0
    healthy: bool = True
    error: Optional[str] = None


def window_bar_count(timeframe: str, window: RunWindow) -> int:
    """Number of ``timeframe`` bars between the window's start and end, inclusive."""
    return int((window.end - window.start) / timeframe_delta(timeframe)) + 1


def _check_cancelled(cancel_event: Optional[threading.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelledError("Run cancelled")


class IngestionPipeline:
    """
    Pulls the latest bars for every active instrument and persists them.

    A run first drains the retry ledger entries of its timeframe (each entry is
    re-fetched at its own timestamp), then fetches the current window, upserts
    what came back, and queues every symbol without data at the window's end
    timestamp. Missing symbols are reported in the result and through the
    notifier; they never fail the run.
    """

    def __init__(
        self,
        store: MarketStore,
        ledger: RetryLedger,
        provider: TwelveDataClient,
        notifier: Optional[PushoverNotifier] = None,
        drain_max_attempts: int = DEFAULT_DRAIN_MAX_ATTEMPTS,
        drain_retry_delay: float = DEFAULT_DRAIN_RETRY_DELAY,
        exchange_timezone: str = DEFAULT_EXCHANGE_TIMEZONE,
    ):
        if drain_max_attempts < 1:
            raise ValueError("drain_max_attempts must be at least 1")
        self.store = store
        self.ledger = ledger
        self.provider = provider
        self.notifier = notifier
        self.drain_max_attempts = drain_max_attempts
        self.drain_retry_delay = drain_retry_delay
        self.exchange_timezone = exchange_timezone
        self.logger = logging.getLogger(__name__)

    # --- Entry points ----------------------------------------------------

    def run(self, timeframe: str = BASE_TIMEFRAME, window: Optional[RunWindow] = None,
            cancel_event: Optional[threading.Event] = None) -> RunResult:
        """
        Runs one ingestion cycle for ``timeframe``.

        Args:
            timeframe: Provider interval to ingest.
            window: Bars to request. Defaults to the latest completed bar in
                    the exchange timezone.
            cancel_event: Aborts the run when set.

        Raises:
            InvalidTimeframeError: If ``timeframe`` is unknown.
        """
        validate_timeframe(timeframe)
        return self._locked(timeframe, "ingestion", lambda: self._ingest(timeframe, window, cancel_event))

    def run_full_refresh(self, timeframe: str = BASE_TIMEFRAME, start: Optional[datetime] = None,
                         end: Optional[datetime] = None, output_size: int = FULL_REFRESH_OUTPUT_SIZE,
                         cancel_event: Optional[threading.Event] = None) -> RunResult:
        """
        Re-imports a whole window of bars for every active instrument.

        For every instrument that returned bars, existing bars of ``timeframe``
        and its retry entries inside the window are deleted before the fetched
        bars are bulk inserted. Symbols without data keep their stored bars and
        are reported but not queued.

        Args:
            start: Window start; with ``end`` omitted too, defaults to the
                   session open 30 days back.
            end: Window end; defaults to the latest completed bar.
        """
        validate_timeframe(timeframe)
        if start is None or end is None:
            default = backfill_window(timeframe, tz=self.exchange_timezone)
            window = RunWindow(start=start or default.start, end=end or default.end)
        else:
            window = RunWindow(start=start, end=end)
        return self._locked(timeframe, "full refresh",
                            lambda: self._refresh(timeframe, window, output_size, cancel_event))

    def _locked(self, timeframe: str, action: str, work: Callable[[], RunResult]) -> RunResult:
        lock = _run_lock(timeframe)
        if not lock.acquire(blocking=False):
            self.logger.warning(f"A {timeframe} run is already in progress, skipping {action}.")
            return RunResult(success=False, error=f"{timeframe} run already in progress")
        try:
            return work()
        except RunCancelledError:
            self.logger.warning(f"{timeframe} {action} cancelled.")
            return RunResult(success=False, error="cancelled")
        except PersistenceError as e:
            self.logger.error(f"{timeframe} {action} aborted: {e}")
            return RunResult(success=False, error=str(e))
        except Exception as e:
            self.logger.exception(f"Unexpected error during {timeframe} {action}: {e}")
            return RunResult(success=False, error=str(e))
        finally:
            lock.release()

    # --- Ingestion -------------------------------------------------------

    def _ingest(self, timeframe: str, window: Optional[RunWindow],
                cancel_event: Optional[threading.Event]) -> RunResult:
        window = window or current_window(timeframe, tz=self.exchange_timezone)
        instruments = self.store.get_active_instruments()
        if not instruments:
            self.logger.warning("No active instruments, nothing to ingest.")
            return RunResult(success=True)

        timeframe_id = self.store.get_timeframe_id(timeframe)
        by_symbol = {instrument.symbol: instrument for instrument in instruments}
        self.logger.info(f"Starting {timeframe} ingestion of {len(instruments)} instruments for "
                         f"{window.start} to {window.end}.")

        recovered, unrecovered = self._drain(timeframe, timeframe_id, instruments, cancel_event)

        _check_cancelled(cancel_event)
        series = self.provider.fetch_series(
            list(by_symbol),
            timeframe,
            start_time=window.start,
            end_time=window.end,
            output_size=window_bar_count(timeframe, window),
            cancel_event=cancel_event,
        )
        rows, failed, received = self._collect_rows(series, by_symbol, timeframe_id)
        healthy = self._check_health(series, instruments, failed)

        _check_cancelled(cancel_event)
        imported = self.store.upsert_price_bars(rows)
        recovered += self._resolve_received(timeframe_id, received)

        for symbol in failed:
            item = series.series.get(symbol)
            reason = (item.message or item.status) if item is not None else "missing"
            self.ledger.insert(by_symbol[symbol].id, timeframe_id, window.end, reason=reason)

        remaining = self.ledger.list_entries(timeframe_id)
        pending = len(remaining)
        still_queued = {instrument.symbol for instrument in instruments
                        if any(entry.instrument_id == instrument.id for entry in remaining)}
        self._notify_unrecoverable(timeframe, window, failed, unrecovered & still_queued)

        self.logger.info(
            f"{timeframe} ingestion finished: {imported} bars imported, {len(failed)} symbols failed, "
            f"{recovered} retries recovered, {pending} retries pending."
        )
        return RunResult(
            success=True,
            imported_count=imported,
            failed_symbols=failed,
            recovered_count=recovered,
            pending_retries=pending,
            healthy=healthy,
        )

    def _collect_rows(self, series: SeriesBySymbol, by_symbol: Dict[str, Instrument],
                      timeframe_id: int) -> Tuple[List[dict], List[str], Dict[int, Set[datetime]]]:
        """Maps fetched bars to rows; returns rows, failed symbols and received timestamps per instrument."""
        rows: List[dict] = []
        failed: List[str] = []
        received: Dict[int, Set[datetime]] = {}
        for symbol, instrument in by_symbol.items():
            item = series.series.get(symbol)
            if item is None or not item.values:
                failed.append(symbol)
                continue
            rows.extend(price_bar_rows(instrument.id, timeframe_id, item.values))
            received[instrument.id] = {bar.timestamp for bar in item.values}
        return rows, failed, received

    def _check_health(self, series: SeriesBySymbol, instruments: Sequence[Instrument], failed: List[str]) -> bool:
        with_data = len(instruments) - len(failed)
        if with_data != len(instruments):
            self.logger.warning(f"Received data for {with_data} of {len(instruments)} instruments. "
                                f"Missing: {', '.join(failed)}")
            return False
        zero_volume = [
            symbol for symbol, item in series.series.items()
            if item.values and any(bar.volume <= 0 for bar in item.values)
        ]
        if zero_volume:
            self.logger.warning(f"Bars with non-positive volume for: {', '.join(zero_volume)}")
            return False
        return True

    def _resolve_received(self, timeframe_id: int, received: Dict[int, Set[datetime]]) -> int:
        """Deletes ledger entries of the timeframe whose bar arrived with the regular fetch."""
        resolved = 0
        for entry in self.ledger.list_entries(timeframe_id):
            if entry.timestamp in received.get(entry.instrument_id, ()):
                if self.ledger.delete(entry.instrument_id, timeframe_id, entry.timestamp):
                    resolved += 1
        return resolved

    # --- Drain -----------------------------------------------------------

    def _drain(self, timeframe: str, timeframe_id: int, instruments: Sequence[Instrument],
               cancel_event: Optional[threading.Event]) -> Tuple[int, Set[str]]:
        """
        Re-fetches every queued (instrument, timestamp) pair of ``timeframe`` for active instruments.

        One drain cycle makes at most ``drain_max_attempts`` rounds over all
        pending timestamps, sleeping ``drain_retry_delay`` between rounds. Each
        round issues one provider request per timestamp.

        Returns:
            Number of entries recovered, and the symbols still queued afterwards.
        """
        by_id = {instrument.id: instrument for instrument in instruments}
        pending: Dict[datetime, Dict[str, RetryLedgerEntry]] = defaultdict(dict)
        for entry in self.ledger.list_entries(timeframe_id):
            if entry.instrument_id in by_id:
                pending[entry.timestamp][by_id[entry.instrument_id].symbol] = entry
            else:
                self.logger.debug(f"Leaving retry entry for inactive instrument {entry.instrument_id} queued.")

        if not pending:
            return 0, set()
        self.logger.info(f"Draining {sum(len(group) for group in pending.values())} queued {timeframe} retries "
                         f"across {len(pending)} timestamps.")

        recovered = 0

        def attempt() -> bool:
            nonlocal recovered
            for timestamp in sorted(pending):
                _check_cancelled(cancel_event)
                group = pending[timestamp]
                recovered += self._retry_timestamp(timeframe, timeframe_id, timestamp, group, cancel_event)
                if not group:
                    del pending[timestamp]
            return not pending

        retry = backoff.on_predicate(
            backoff.constant,
            interval=self.drain_retry_delay,
            jitter=None,
            max_tries=self.drain_max_attempts,
            logger=logger,
        )(attempt)
        retry()

        unrecovered = {symbol for group in pending.values() for symbol in group}
        if unrecovered:
            self.logger.warning(f"Retries exhausted after {self.drain_max_attempts} attempts; "
                                f"still queued: {', '.join(sorted(unrecovered))}")
        return recovered, unrecovered

    def _retry_timestamp(self, timeframe: str, timeframe_id: int, timestamp: datetime,
                         group: Dict[str, RetryLedgerEntry], cancel_event: Optional[threading.Event]) -> int:
        """Fetches one timestamp for every symbol in ``group``; recovered symbols are removed from it."""
        series = self.provider.fetch_series(list(group), timeframe, start_time=timestamp,
                                            end_time=timestamp, output_size=1, cancel_event=cancel_event)
        rows: List[dict] = []
        done: List[str] = []
        for symbol, entry in group.items():
            item = series.series.get(symbol)
            values = item.values if item is not None else None
            bars = [bar for bar in values or [] if bar.timestamp == timestamp]
            if bars:
                rows.extend(price_bar_rows(entry.instrument_id, timeframe_id, bars))
                done.append(symbol)
        self.store.upsert_price_bars(rows)
        for symbol in done:
            entry = group.pop(symbol)
            self.ledger.delete(entry.instrument_id, timeframe_id, entry.timestamp)
        return len(done)

    # --- Full refresh ----------------------------------------------------

    def _refresh(self, timeframe: str, window: RunWindow, output_size: int,
                 cancel_event: Optional[threading.Event]) -> RunResult:
        instruments = self.store.get_active_instruments()
        if not instruments:
            self.logger.warning("No active instruments, nothing to refresh.")
            return RunResult(success=True)

        timeframe_id = self.store.get_timeframe_id(timeframe)
        by_symbol = {instrument.symbol: instrument for instrument in instruments}
        self.logger.info(f"Starting {timeframe} full refresh of {len(instruments)} instruments for "
                         f"{window.start} to {window.end}.")

        series = self.provider.fetch_series(
            list(by_symbol),
            timeframe,
            start_time=window.start,
            end_time=window.end,
            output_size=output_size,
            cancel_event=cancel_event,
        )
        rows, failed, _ = self._collect_rows(series, by_symbol, timeframe_id)
        # Bars outside the window would collide with rows that are not deleted
        rows = [row for row in rows if window.contains(row["timestamp"])]
        if failed:
            self.logger.warning(f"No data for {len(failed)} symbols during full refresh, keeping their "
                                f"existing bars: {', '.join(failed)}")

        _check_cancelled(cancel_event)
        refreshed = sorted({row["instrument_id"] for row in rows})
        imported = 0
        if refreshed:
            self.store.delete_price_bars(timeframe_id, window.start, window.end, instrument_ids=refreshed)
            self.ledger.clear_window(timeframe_id, window.start, window.end, instrument_ids=refreshed)
            imported = self.store.bulk_insert_price_bars(rows)

        return RunResult(
            success=True,
            imported_count=imported,
            failed_symbols=failed,
            pending_retries=len(self.ledger.list_entries(timeframe_id)),
            healthy=not failed,
        )

    # --- Notifications ---------------------------------------------------

    def _notify_unrecoverable(self, timeframe: str, window: RunWindow, failed: List[str], unrecovered: Set[str]):
        if self.notifier is None or not (failed or unrecovered):
            return
        lines = []
        if failed:
            lines.append(f"No data for {window.end}: {', '.join(sorted(failed))}")
        if unrecovered:
            lines.append(f"Still queued after retries: {', '.join(sorted(unrecovered))}")
        try:
            self.notifier.send_notification("\n".join(lines), title=f"{timeframe} ingestion incomplete")
        except Exception as e:
            self.logger.error(f"Failed to send ingestion notification: {e}")
