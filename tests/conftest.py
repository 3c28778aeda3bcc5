"""Shared fixtures: synthetic price histories and an in-memory price source."""
from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional

import numpy as np
import pandas as pd
import pytest

from portfolio_engine import metrics
from portfolio_engine.assets import Asset
from portfolio_engine.data.series import PriceSeries
from portfolio_engine.errors import UpstreamDataError

SeriesFactory = Callable[..., PriceSeries]


def random_walk(
    ticker: str,
    n: int = 400,
    mu: float = 0.0004,
    sigma: float = 0.012,
    seed: int = 0,
    start: str = "2019-01-01",
    first_price: float = 100.0,
) -> PriceSeries:
    rng = np.random.default_rng(seed)
    steps = rng.normal(mu, sigma, size=n - 1)
    prices = first_price * np.exp(np.concatenate([[0.0], np.cumsum(steps)]))
    dates = [ts.date() for ts in pd.bdate_range(start=start, periods=n)]
    return PriceSeries(ticker=ticker, dates=tuple(dates), prices=prices)


def constant_growth(ticker: str, n: int, daily_log_return: float, start: str = "2019-01-01") -> PriceSeries:
    prices = 50.0 * np.exp(daily_log_return * np.arange(n))
    dates = [ts.date() for ts in pd.bdate_range(start=start, periods=n)]
    return PriceSeries(ticker=ticker, dates=tuple(dates), prices=prices)


def every_day_clone(series: PriceSeries, ticker: str) -> PriceSeries:
    """Same closes quoted on every calendar day, weekends carried forward."""

    daily = series.to_series().asfreq("D").ffill()
    return PriceSeries(ticker, tuple(ts.date() for ts in daily.index), daily.to_numpy())


class StubSource:
    """Serve pre-built histories; listed tickers fail like a flaky upstream."""

    def __init__(self, series: Iterable[PriceSeries], failing: Optional[Dict[str, str]] = None) -> None:
        self.series = {s.ticker: s for s in series}
        self.failing = dict(failing or {})
        self.calls: Dict[str, int] = {}

    def get_price_history(self, ticker: str) -> PriceSeries:
        self.calls[ticker] = self.calls.get(ticker, 0) + 1
        if ticker in self.failing:
            raise UpstreamDataError(ticker, self.failing[ticker])
        if ticker not in self.series:
            raise UpstreamDataError(ticker, f"unknown ticker '{ticker}'")
        return self.series[ticker]


@pytest.fixture
def make_series() -> SeriesFactory:
    return random_walk


@pytest.fixture
def universe() -> Dict[str, PriceSeries]:
    specs = [
        ("AAPL", 0.0008, 0.018),
        ("MSFT", 0.0006, 0.015),
        ("XOM", 0.0003, 0.014),
        ("JPM", 0.0004, 0.016),
        ("BTC", 0.0012, 0.040),
        ("SPY", 0.0004, 0.010),
        ("IWM", 0.0003, 0.013),
        ("IWD", 0.0003, 0.011),
        ("IWF", 0.0005, 0.012),
    ]
    return {
        ticker: random_walk(ticker, n=400, mu=mu, sigma=sigma, seed=i)
        for i, (ticker, mu, sigma) in enumerate(specs)
    }


@pytest.fixture
def asset_book() -> Dict[str, Asset]:
    return {
        "AAPL": Asset("AAPL", "Apple", "United States", "Technology"),
        "MSFT": Asset("MSFT", "Microsoft", "United States", "Technology"),
        "XOM": Asset("XOM", "Exxon Mobil", "United States", "Energy"),
        "JPM": Asset("JPM", "JPMorgan Chase", "United States", "Financial Services"),
        "BTC": Asset("BTC", "Bitcoin", "Global", "Crypto", "CRYPTO"),
    }


@pytest.fixture
def stub_source(universe: Dict[str, PriceSeries]) -> StubSource:
    return StubSource(universe.values())


@pytest.fixture(autouse=True)
def _fresh_metrics() -> None:
    metrics.reset_metrics()
