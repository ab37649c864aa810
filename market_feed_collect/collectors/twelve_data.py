"""Collector for Twelve Data time series via the ``complex_data`` endpoint."""

import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import backoff
import pandas as pd
import requests
from pyrate_limiter import Limiter

from market_feed_collect.collectors.methods import TIME_SERIES, Method, serialize_methods
from market_feed_collect.errors import ProviderUnavailableError, RunCancelledError
from market_feed_collect.models import OHLCV
from market_feed_collect.timeframes import format_provider_datetime, validate_timeframe
from market_feed_collect.utils.limiter import TWELVE_DATA_LIMIT_KEY, limiter

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.twelvedata.com"
COMPLEX_DATA_PATH = "/complex_data"

# The endpoint rejects requests carrying too many symbols
DEFAULT_CHUNK_SIZE = 5
DEFAULT_TIMEOUT = 300

STATUS_OK = "ok"
STATUS_PARTIAL = "partial_success"
STATUS_ERROR = "error"
STATUS_MISSING = "missing"
STATUS_INVALID = "invalid"


@dataclass
class SymbolSeries:
    """Bars returned for one symbol. ``values`` is None when the symbol failed."""
    symbol: str
    interval: str
    values: Optional[List[OHLCV]]
    status: str = STATUS_OK
    message: Optional[str] = None

    @property
    def missing(self) -> bool:
        return self.values is None


@dataclass
class SeriesBySymbol:
    """Merged result of a chunked fetch with exactly one entry per requested symbol."""
    series: Dict[str, SymbolSeries] = field(default_factory=dict)
    status: str = STATUS_OK
    request_count: int = 0

    def __getitem__(self, symbol: str) -> SymbolSeries:
        return self.series[symbol]

    def __contains__(self, symbol: str) -> bool:
        return symbol in self.series

    def __len__(self) -> int:
        return len(self.series)

    @property
    def missing_symbols(self) -> List[str]:
        return [symbol for symbol, item in self.series.items() if item.missing]

    @property
    def available_symbols(self) -> List[str]:
        return [symbol for symbol, item in self.series.items() if not item.missing]


def chunk_symbols(symbols: Sequence[str], chunk_size: int) -> List[List[str]]:
    """Splits symbols into consecutive chunks of at most ``chunk_size``."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    return [list(symbols[i:i + chunk_size]) for i in range(0, len(symbols), chunk_size)]


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def parse_value(raw: Dict[str, Any]) -> OHLCV:
    """Maps one provider value object (all fields are strings) to an OHLCV bar."""
    return OHLCV(
        timestamp=pd.to_datetime(raw["datetime"]).to_pydatetime(),
        open=float(raw["open"]),
        high=float(raw["high"]),
        low=float(raw["low"]),
        close=float(raw["close"]),
        # Indices and FX pairs carry no volume
        volume=_to_float(raw.get("volume")),
    )


def parse_response(body: Dict[str, Any], requested: Sequence[str], interval: str) -> Dict[str, SymbolSeries]:
    """
    Parses a ``complex_data`` response body.

    Every symbol in ``requested`` gets an entry; symbols the response does not
    mention, or whose values are null or malformed, are marked missing.
    """
    if not isinstance(body, dict) or body.get("data") is None:
        message = body.get("message") if isinstance(body, dict) else None
        raise ProviderUnavailableError(f"Provider returned no data: {message or body!r}", symbols=requested)

    parsed: Dict[str, SymbolSeries] = {}
    for item in body["data"]:
        if not item:
            logger.warning("Encountered an empty series entry in the provider response.")
            continue
        meta = item.get("meta") or {}
        symbol = meta.get("symbol")
        if symbol not in requested:
            logger.warning(f"Provider returned series for unrequested symbol {symbol!r}. Meta: {meta}")
            continue

        raw_values = item.get("values")
        if raw_values is None:
            logger.warning(f"Values for {symbol} are null. Meta: {meta}")
            parsed[symbol] = SymbolSeries(symbol, meta.get("interval", interval), None,
                                          status=item.get("status") or STATUS_MISSING,
                                          message=item.get("message"))
            continue
        try:
            values = sorted((parse_value(raw) for raw in raw_values), key=lambda bar: bar.timestamp)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Could not parse values for {symbol}: {e}")
            parsed[symbol] = SymbolSeries(symbol, meta.get("interval", interval), None,
                                          status=STATUS_INVALID, message=str(e))
            continue
        parsed[symbol] = SymbolSeries(symbol, meta.get("interval", interval), values,
                                      status=item.get("status") or STATUS_OK)

    for symbol in requested:
        if symbol not in parsed:
            parsed[symbol] = SymbolSeries(symbol, interval, None, status=STATUS_MISSING,
                                          message="Symbol absent from provider response")
    return parsed


class TwelveDataClient:
    """
    Fetches time series for many symbols at once.

    Symbols are split into chunks of ``chunk_size`` and each chunk is requested
    concurrently. A failing chunk only marks its own symbols as missing; the
    merged ``SeriesBySymbol`` then reports ``partial_success``.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: Optional[int] = None,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[Limiter] = None,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.api_key = api_key
        self.url = base_url.rstrip("/") + COMPLEX_DATA_PATH
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.max_workers = max_workers
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or limiter
        self.logger = logging.getLogger(__name__)

    def build_payload(
        self,
        symbols: Sequence[str],
        timeframe: str,
        start_time: Optional[datetime],
        end_time: Optional[datetime],
        output_size: int,
        methods: Sequence[Method],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "symbols": list(symbols),
            "intervals": [timeframe],
            "outputsize": output_size,
            "methods": serialize_methods(methods),
        }
        if start_time is not None:
            payload["start_date"] = format_provider_datetime(start_time)
        if end_time is not None:
            payload["end_date"] = format_provider_datetime(end_time)
        return payload

    @backoff.on_exception(backoff.expo,
                          requests.exceptions.ConnectionError,
                          max_tries=3,
                          logger=logger)
    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.rate_limiter.try_acquire(TWELVE_DATA_LIMIT_KEY):
            raise ProviderUnavailableError("Rate limit wait exceeded", symbols=payload["symbols"])
        response = self.session.post(self.url, params={"apikey": self.api_key}, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _fetch_chunk(self, payload: Dict[str, Any], cancel_event: Optional[threading.Event]) -> Dict[str, SymbolSeries]:
        chunk = payload["symbols"]
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError("Fetch cancelled before request was sent")
        self.logger.debug(f"Requesting {payload['intervals']} series for {chunk}")
        try:
            body = self._post(payload)
        except requests.exceptions.RequestException as e:
            raise ProviderUnavailableError(f"Request for {chunk} failed: {e}", symbols=chunk) from e
        except ValueError as e:
            raise ProviderUnavailableError(f"Response for {chunk} is not valid JSON: {e}", symbols=chunk) from e
        return parse_response(body, chunk, payload["intervals"][0])

    def fetch_series(
        self,
        symbols: Sequence[str],
        timeframe: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        output_size: int = 1,
        methods: Optional[Sequence[Method]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SeriesBySymbol:
        """
        Fetches ``timeframe`` bars between ``start_time`` and ``end_time`` for all symbols.

        Args:
            symbols: Provider symbols; duplicates are ignored.
            timeframe: Provider interval name (e.g., "5min").
            start_time: Inclusive start, exchange local time. Omitted from the request if None.
            end_time: Inclusive end, exchange local time. Omitted from the request if None.
            output_size: Maximum number of bars per symbol.
            methods: Request methods, ``time_series`` by default.
            cancel_event: When set, unsent chunks are skipped and RunCancelledError is raised.

        Returns:
            One ``SymbolSeries`` per requested symbol and an overall status.

        Raises:
            InvalidTimeframeError: If ``timeframe`` is unknown.
            RunCancelledError: If ``cancel_event`` was set during the fetch.
        """
        validate_timeframe(timeframe)
        unique_symbols = list(dict.fromkeys(symbols))
        if not unique_symbols:
            return SeriesBySymbol()

        chunks = chunk_symbols(unique_symbols, self.chunk_size)
        methods = list(methods) if methods else [TIME_SERIES]
        workers = min(len(chunks), self.max_workers or len(chunks))
        self.logger.info(
            f"Fetching {timeframe} series for {len(unique_symbols)} symbols in {len(chunks)} chunks "
            f"({start_time} to {end_time})."
        )

        merged: Dict[str, SymbolSeries] = {}
        cancelled = False
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_chunk = {
                executor.submit(
                    self._fetch_chunk,
                    self.build_payload(chunk, timeframe, start_time, end_time, output_size, methods),
                    cancel_event,
                ): chunk
                for chunk in chunks
            }
            for future in concurrent.futures.as_completed(future_to_chunk):
                chunk = future_to_chunk[future]
                try:
                    merged.update(future.result())
                except RunCancelledError:
                    cancelled = True
                except ProviderUnavailableError as e:
                    self.logger.error(f"Chunk {chunk} failed: {e}")
                    for symbol in chunk:
                        merged[symbol] = SymbolSeries(symbol, timeframe, None, status=STATUS_ERROR, message=str(e))

        if cancelled or (cancel_event is not None and cancel_event.is_set()):
            self.logger.warning("Fetch cancelled; discarding fetched chunks.")
            raise RunCancelledError("Fetch cancelled")

        result = SeriesBySymbol(
            series={symbol: merged[symbol] for symbol in unique_symbols},
            request_count=len(chunks),
        )
        missing = result.missing_symbols
        if not missing:
            result.status = STATUS_OK
        elif len(missing) == len(unique_symbols):
            result.status = STATUS_ERROR
        else:
            result.status = STATUS_PARTIAL
        self.logger.info(
            f"Fetch finished with status '{result.status}': {len(result.available_symbols)} symbols with data, "
            f"{len(missing)} missing."
        )
        return result
