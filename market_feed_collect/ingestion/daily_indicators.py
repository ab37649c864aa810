"""Daily ATR import into the ``daily_indicators`` table."""

import logging
import threading
from typing import List, Optional

from market_feed_collect.analytics.buckets import ATR_PERIOD
from market_feed_collect.analytics.indicators import average_true_range
from market_feed_collect.collectors.twelve_data import TwelveDataClient
from market_feed_collect.errors import PersistenceError, RunCancelledError
from market_feed_collect.ingestion.pipeline import RunResult
from market_feed_collect.storage.store import MarketStore

DAILY_TIMEFRAME = "1day"


class DailyIndicatorImporter:
    """
    Fetches daily bars for all active instruments and stores their ATR.

    The previous indicator set is replaced as a whole. If the provider returns
    nothing usable the existing set is kept.
    """

    def __init__(self, store: MarketStore, provider: TwelveDataClient, period: int = ATR_PERIOD):
        self.store = store
        self.provider = provider
        self.period = period
        self.logger = logging.getLogger(__name__)

    def run(self, cancel_event: Optional[threading.Event] = None) -> RunResult:
        try:
            return self._import(cancel_event)
        except RunCancelledError:
            self.logger.warning("Daily indicator import cancelled.")
            return RunResult(success=False, error="cancelled")
        except PersistenceError as e:
            self.logger.error(f"Daily indicator import aborted: {e}")
            return RunResult(success=False, error=str(e))
        except Exception as e:
            self.logger.exception(f"Unexpected error during daily indicator import: {e}")
            return RunResult(success=False, error=str(e))

    def _import(self, cancel_event: Optional[threading.Event]) -> RunResult:
        instruments = self.store.get_active_instruments()
        if not instruments:
            self.logger.warning("No active instruments, nothing to import.")
            return RunResult(success=True)

        series = self.provider.fetch_series(
            [instrument.symbol for instrument in instruments],
            DAILY_TIMEFRAME,
            output_size=self.period + 1,
            cancel_event=cancel_event,
        )

        rows: List[dict] = []
        failed: List[str] = []
        for instrument in instruments:
            item = series.series.get(instrument.symbol)
            bars = item.values if item is not None else None
            atr = average_true_range(bars[-(self.period + 1):], self.period) if bars else None
            if atr is None:
                self.logger.warning(f"Not enough daily bars to compute ATR for {instrument.symbol}.")
                failed.append(instrument.symbol)
                continue
            rows.append({"instrument_id": instrument.id, "timestamp": bars[-1].timestamp, "atr": atr})

        if not rows:
            self.logger.error("No ATR values computed; keeping the existing daily indicators.")
            return RunResult(success=False, failed_symbols=failed, healthy=False,
                             error="no daily data received")

        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError("Daily indicator import cancelled")
        imported = self.store.replace_daily_indicators(rows)
        self.logger.info(f"Imported ATR for {imported} instruments, {len(failed)} skipped.")
        return RunResult(success=True, imported_count=imported, failed_symbols=failed, healthy=not failed)
