"""Data collectors for market data providers."""

from .methods import ComplexMethod, Method, SimpleMethod, TIME_SERIES
from .twelve_data import SeriesBySymbol, SymbolSeries, TwelveDataClient

__all__ = [
    "ComplexMethod",
    "Method",
    "SimpleMethod",
    "TIME_SERIES",
    "SeriesBySymbol",
    "SymbolSeries",
    "TwelveDataClient",
]
