"""Data ingestion utilities."""

from .loader import CsvPriceSource, LoaderError, load_assets, load_weights
from .series import PriceSeries, ReturnPanel, align_prices, build_return_panel, log_returns
from .sources import (
    CachedPriceSource,
    InMemoryCache,
    SourceChain,
    StaticMarketEnvironment,
    fetch_histories,
)

__all__ = [
    "CachedPriceSource",
    "CsvPriceSource",
    "InMemoryCache",
    "LoaderError",
    "PriceSeries",
    "ReturnPanel",
    "SourceChain",
    "StaticMarketEnvironment",
    "align_prices",
    "build_return_panel",
    "fetch_histories",
    "load_assets",
    "load_weights",
    "log_returns",
]
