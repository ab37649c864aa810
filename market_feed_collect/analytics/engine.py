"""Per-instrument statistics over persisted 5-minute history."""

import concurrent.futures
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd

from market_feed_collect.analytics.buckets import DEFAULT_BUCKETS, HISTORY_DAYS, bucket_bars
from market_feed_collect.analytics.relative_strength import relative_strength
from market_feed_collect.analytics.relative_volume import relative_volume
from market_feed_collect.models import Instrument
from market_feed_collect.storage.store import MarketStore
from market_feed_collect.timeframes import BASE_TIMEFRAME, DEFAULT_EXCHANGE_TIMEZONE, exchange_now


@dataclass
class BucketStatistics:
    rvol: Optional[float] = None
    rsrw: Optional[float] = None


@dataclass
class StatisticsSnapshot:
    """Statistics of one instrument at its latest bar."""
    instrument_id: int
    symbol: str
    atr: Optional[float]
    last_price: float
    last_timestamp: datetime
    per_timeframe: Dict[str, BucketStatistics] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "atr": round(self.atr, 2) if self.atr is not None else None,
            "last_price": self.last_price,
            "last_timestamp": self.last_timestamp.isoformat(),
            "per_timeframe": {
                bucket: {"rvol": stats.rvol, "rsrw": stats.rsrw}
                for bucket, stats in self.per_timeframe.items()
            },
        }


@dataclass
class StatisticsResult:
    snapshots: List[StatisticsSnapshot] = field(default_factory=list)
    success: bool = True
    count: int = 0


def split_history(history: pd.DataFrame, as_of: Optional[datetime] = None) -> Dict[int, pd.DataFrame]:
    """
    Splits a multi-instrument history frame into one time-indexed frame per instrument.

    Bars after ``as_of`` are dropped.
    """
    if history.empty:
        return {}
    if as_of is not None:
        history = history[history["timestamp"] <= as_of]
    frames = {}
    for instrument_id, bars in history.groupby("instrument_id"):
        frames[int(instrument_id)] = (
            bars.drop(columns="instrument_id").set_index("timestamp").sort_index()
        )
    return frames


class AnalyticsEngine:
    """
    Computes RVOL and RS/RW for each instrument and bucket.

    The history is split once and then only read; instruments are processed
    concurrently. An error in one statistic yields None for it and is logged.
    """

    def __init__(self, buckets: Sequence[str] = DEFAULT_BUCKETS, max_workers: Optional[int] = None):
        for bucket in buckets:
            bucket_bars(bucket)
        self.buckets = list(buckets)
        self.max_workers = max_workers
        self.logger = logging.getLogger(__name__)

    def compute(
        self,
        instruments: Sequence[Instrument],
        history: pd.DataFrame,
        atr_by_instrument: Dict[int, Optional[float]],
        benchmark_id: Optional[int],
        as_of: Optional[datetime] = None,
    ) -> List[StatisticsSnapshot]:
        """
        Builds a snapshot for every instrument with history.

        Args:
            instruments: Instruments to report on.
            history: Base-interval bars as returned by ``MarketStore.get_price_history``.
            atr_by_instrument: Daily ATR per instrument id.
            benchmark_id: Instrument id of the benchmark, or None if unknown.
            as_of: Ignore bars after this time. Each instrument is evaluated at
                   its latest remaining bar.

        Returns:
            One snapshot per instrument with history, in input order.
        """
        frames = split_history(history, as_of)
        benchmark_bars = frames.get(benchmark_id) if benchmark_id is not None else None
        benchmark_atr = atr_by_instrument.get(benchmark_id) if benchmark_id is not None else None
        if benchmark_bars is None:
            self.logger.warning(f"No benchmark history for instrument {benchmark_id}; RS/RW will be empty.")

        def snapshot(instrument: Instrument) -> Optional[StatisticsSnapshot]:
            return self._snapshot(instrument, frames.get(instrument.id), benchmark_bars,
                                  atr_by_instrument.get(instrument.id), benchmark_atr)

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(snapshot, instruments))

        snapshots = [result for result in results if result is not None]
        self.logger.info(f"Computed statistics for {len(snapshots)} of {len(instruments)} instruments.")
        return snapshots

    def _snapshot(self, instrument: Instrument, bars: Optional[pd.DataFrame],
                  benchmark_bars: Optional[pd.DataFrame], atr: Optional[float],
                  benchmark_atr: Optional[float]) -> Optional[StatisticsSnapshot]:
        if bars is None or bars.empty:
            self.logger.debug(f"No price history for {instrument.symbol}, skipping.")
            return None

        as_of = bars.index[-1]
        per_timeframe = {}
        for bucket in self.buckets:
            per_timeframe[bucket] = BucketStatistics(
                rvol=self._safely(instrument, bucket, relative_volume, bars, as_of, bucket),
                rsrw=self._safely(instrument, bucket, relative_strength, bars, benchmark_bars, as_of, bucket,
                                  atr, benchmark_atr),
            )
        return StatisticsSnapshot(
            instrument_id=instrument.id,
            symbol=instrument.symbol,
            atr=atr,
            last_price=float(bars["close"].iloc[-1]),
            last_timestamp=as_of.to_pydatetime(),
            per_timeframe=per_timeframe,
        )

    def _safely(self, instrument: Instrument, bucket: str, calculation: Callable[..., Optional[float]],
                *args) -> Optional[float]:
        try:
            return calculation(*args)
        except Exception as e:
            self.logger.error(f"{calculation.__name__} failed for {instrument.symbol} ({bucket}): {e}")
            return None


class StatisticsService:
    """Loads history and ATRs from the store and runs the engine over them."""

    def __init__(self, store: MarketStore, engine: Optional[AnalyticsEngine] = None, benchmark_symbol: str = "SPY",
                 exchange_timezone: str = DEFAULT_EXCHANGE_TIMEZONE, history_days: int = HISTORY_DAYS):
        self.store = store
        self.engine = engine or AnalyticsEngine()
        self.benchmark_symbol = benchmark_symbol
        self.exchange_timezone = exchange_timezone
        self.history_days = history_days
        self.logger = logging.getLogger(__name__)

    def compute_statistics(self, as_of: Optional[datetime] = None,
                           tickers: Optional[Sequence[str]] = None) -> StatisticsResult:
        """
        Statistics for active instruments (all, or only ``tickers``) as of ``as_of``.

        ``as_of`` defaults to the current exchange time. Unexpected errors are
        logged and reported as an unsuccessful, empty result.
        """
        try:
            end = exchange_now(as_of, self.exchange_timezone).to_pydatetime()
            start = end - timedelta(days=self.history_days)

            instruments = self.store.get_active_instruments(tickers)
            if not instruments:
                self.logger.warning("No active instruments to compute statistics for.")
                return StatisticsResult()

            benchmark = self.store.get_instrument_by_symbol(self.benchmark_symbol)
            benchmark_id = benchmark.id if benchmark is not None else None
            instrument_ids = {instrument.id for instrument in instruments}
            if benchmark_id is not None:
                instrument_ids.add(benchmark_id)

            timeframe_id = self.store.get_timeframe_id(BASE_TIMEFRAME)
            history = self.store.get_price_history(start, end, timeframe_id, sorted(instrument_ids))
            atr_map = self.store.get_daily_atr_map()

            snapshots = self.engine.compute(instruments, history, atr_map, benchmark_id, as_of=end)
        except Exception as e:
            self.logger.exception(f"Statistics computation failed: {e}")
            return StatisticsResult(snapshots=[], success=False, count=0)
        return StatisticsResult(snapshots=snapshots, success=True, count=len(snapshots))
