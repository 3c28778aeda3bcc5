"""Collaborator ports for price histories and market environment data."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..errors import UpstreamDataError
from .series import PriceSeries

logger = logging.getLogger(__name__)

DEFAULT_RISK_FREE_RATE = 0.042

# Units of each currency per one US dollar.
DEFAULT_FX_RATES: Mapping[str, float] = {
    "USD": 1.0,
    "EUR": 0.92,
    "GBP": 0.79,
    "JPY": 157.5,
    "INR": 83.5,
    "NGN": 1480.0,
    "QAR": 3.64,
    "SAR": 3.75,
}


class PriceHistorySource(Protocol):
    def get_price_history(self, ticker: str) -> PriceSeries:
        ...


class MarketEnvironment(Protocol):
    def get_risk_free_rate(self) -> float:
        ...

    def get_fx_rate(self, from_currency: str, to_currency: str) -> float:
        ...


class CachePort(Protocol):
    def get(self, key: str) -> Optional[Tuple[Any, float]]:
        """Return ``(value, stored_at)`` or ``None``."""

    def set(self, key: str, value: Any) -> None:
        ...


@dataclass
class StaticMarketEnvironment:
    """Fixed risk-free rate and USD-based FX table."""

    risk_free_rate: float = DEFAULT_RISK_FREE_RATE
    fx_rates: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_FX_RATES))

    def get_risk_free_rate(self) -> float:
        return float(self.risk_free_rate)

    def get_fx_rate(self, from_currency: str, to_currency: str) -> float:
        src = from_currency.strip().upper()
        dst = to_currency.strip().upper()
        if src == dst:
            return 1.0
        try:
            from_rate = float(self.fx_rates[src])
            to_rate = float(self.fx_rates[dst])
        except KeyError as exc:
            raise ValueError(f"No FX rate for currency {exc.args[0]!r}") from exc
        return to_rate / from_rate


def _check_not_empty(ticker: str, series: PriceSeries) -> PriceSeries:
    if len(series) == 0:
        raise UpstreamDataError(ticker, f"Empty price history for '{ticker}'")
    return series


def _with_fallback(series: PriceSeries, reason: str) -> PriceSeries:
    return dataclasses.replace(series, fallback=reason)


class SourceChain:
    """Try each source in order; the first non-empty history wins."""

    def __init__(self, sources: Sequence[PriceHistorySource], names: Optional[Sequence[str]] = None) -> None:
        if not sources:
            raise ValueError("SourceChain requires at least one source")
        self._sources = list(sources)
        if names is None:
            names = [type(src).__name__ for src in self._sources]
        if len(names) != len(self._sources):
            raise ValueError("names must match sources")
        self._names = list(names)

    def get_price_history(self, ticker: str) -> PriceSeries:
        attempts: List[Dict[str, str]] = []
        for name, source in zip(self._names, self._sources):
            try:
                series = _check_not_empty(ticker, source.get_price_history(ticker))
            except Exception as exc:  # noqa: BLE001
                logger.debug("Source %s failed for %s: %s", name, ticker, exc)
                attempts.append({"source": name, "error": str(exc)})
                continue
            if attempts:
                detail = "; ".join(f"{item['source']}: {item['error']}" for item in attempts)
                series = _with_fallback(series, f"served by backup source '{name}' ({detail})")
            return series
        detail = "; ".join(f"{item['source']}: {item['error']}" for item in attempts)
        raise UpstreamDataError(ticker, f"All sources failed for '{ticker}' ({detail})", attempts)


class InMemoryCache:
    """Thread-safe TTL + LRU cache storing ``(value, stored_at)`` pairs."""

    def __init__(
        self,
        ttl_seconds: float = 6 * 60 * 60,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._data: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[Tuple[Any, float]]:
        with self._lock:
            entry = self._data.get(key)
            if entry is not None:
                self._data.move_to_end(key)
            return entry

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = (value, self._clock())
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


class CachedPriceSource:
    """Serve fresh cache hits, refresh stale ones, fall back to stale on failure."""

    def __init__(
        self,
        source: PriceHistorySource,
        cache: CachePort,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._cache = cache
        if ttl_seconds is None:
            ttl_seconds = float(getattr(cache, "ttl_seconds", 6 * 60 * 60))
        self._ttl = float(ttl_seconds)
        self._clock = getattr(cache, "now", clock)

    @staticmethod
    def _key(ticker: str) -> str:
        return f"price-history:{ticker.upper()}"

    def get_price_history(self, ticker: str) -> PriceSeries:
        key = self._key(ticker)
        cached = self._cache.get(key)
        if cached is not None:
            value, stored_at = cached
            if self._clock() - stored_at < self._ttl:
                return value
        try:
            fresh = _check_not_empty(ticker, self._source.get_price_history(ticker))
        except Exception as exc:  # noqa: BLE001
            if cached is not None:
                age = max(self._clock() - stored_at, 0.0)
                logger.warning("Live fetch failed for %s, serving stale cache: %s", ticker, exc)
                return _with_fallback(value, f"stale cache ({age:.0f}s old); live fetch failed: {exc}")
            if isinstance(exc, UpstreamDataError):
                raise
            raise UpstreamDataError(ticker, f"Failed to fetch '{ticker}': {exc}") from exc
        self._cache.set(key, fresh)
        return fresh


@dataclass
class FetchReport:
    series: Dict[str, PriceSeries]
    failures: Dict[str, str]
    fallbacks: Dict[str, str] = field(default_factory=dict)

    def ordered(self, tickers: Sequence[str]) -> List[PriceSeries]:
        return [self.series[t] for t in tickers if t in self.series]


def fetch_histories(
    source: PriceHistorySource,
    tickers: Sequence[str],
    max_workers: int = 8,
) -> FetchReport:
    """Fetch every ticker concurrently and collect per-ticker failures.

    Histories are keyed and labelled by the requested ticker, whatever label
    the source put on them. Histories served from a fallback are listed in
    :attr:`FetchReport.fallbacks`.
    """

    unique = list(dict.fromkeys(tickers))
    series: Dict[str, PriceSeries] = {}
    failures: Dict[str, str] = {}
    fallbacks: Dict[str, str] = {}
    if not unique:
        return FetchReport(series=series, failures=failures, fallbacks=fallbacks)
    workers = max(1, min(int(max_workers), len(unique)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(source.get_price_history, ticker): ticker for ticker in unique}
        for future in as_completed(futures):
            ticker = futures[future]
            try:
                result = _check_not_empty(ticker, future.result())
            except Exception as exc:  # noqa: BLE001
                logger.warning("Price history unavailable for %s: %s", ticker, exc)
                failures[ticker] = str(exc)
                continue
            if result.ticker != ticker:
                logger.debug("Relabelling history %r as requested ticker %r", result.ticker, ticker)
                result = dataclasses.replace(result, ticker=ticker)
            if result.fallback:
                fallbacks[ticker] = result.fallback
            series[ticker] = result
    return FetchReport(series=series, failures=failures, fallbacks=fallbacks)


__all__ = [
    "CachePort",
    "CachedPriceSource",
    "DEFAULT_FX_RATES",
    "DEFAULT_RISK_FREE_RATE",
    "FetchReport",
    "InMemoryCache",
    "MarketEnvironment",
    "PriceHistorySource",
    "SourceChain",
    "StaticMarketEnvironment",
    "fetch_histories",
]
