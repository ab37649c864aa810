"""Exception types raised by the market_feed_collect package."""


class MarketFeedError(Exception):
    """Base class for all errors raised by this package."""


class ProviderUnavailableError(MarketFeedError):
    """The market data provider could not be reached or returned an HTTP error.

    Raised per request chunk inside the provider client and absorbed there
    into a partial result; callers of ``fetch_series`` never see it.
    """

    def __init__(self, message: str, symbols=None):
        super().__init__(message)
        self.symbols = list(symbols or [])


class PersistenceError(MarketFeedError):
    """A read or write against the database failed."""


class InvalidTimeframeError(MarketFeedError, ValueError):
    """An unknown timeframe or statistics bucket name was used."""


class RunCancelledError(MarketFeedError):
    """The cancellation event was set while a run was in progress."""
