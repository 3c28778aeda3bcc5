import numpy as np
import pytest

from conftest import StubSource, random_walk
from portfolio_engine.data.sources import (
    CachedPriceSource,
    InMemoryCache,
    SourceChain,
    StaticMarketEnvironment,
    fetch_histories,
)
from portfolio_engine.errors import UpstreamDataError


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def test_static_market_cross_rates() -> None:
    market = StaticMarketEnvironment()
    assert market.get_risk_free_rate() == pytest.approx(0.042)
    assert market.get_fx_rate("usd", "USD") == 1.0
    assert market.get_fx_rate("USD", "EUR") == pytest.approx(0.92)
    assert market.get_fx_rate("EUR", "GBP") == pytest.approx(0.79 / 0.92)
    with pytest.raises(ValueError, match="XYZ"):
        market.get_fx_rate("USD", "XYZ")


def test_source_chain_falls_through_and_reports_attempts() -> None:
    series = random_walk("AAPL", n=20)
    primary = StubSource([], failing={"AAPL": "rate limited"})
    backup = StubSource([series])
    chain = SourceChain([primary, backup], names=["live", "backup"])
    served = chain.get_price_history("AAPL")
    np.testing.assert_array_equal(served.prices, series.prices)
    assert "backup source 'backup'" in served.fallback
    assert "rate limited" in served.fallback
    assert SourceChain([backup]).get_price_history("AAPL").fallback is None

    with pytest.raises(UpstreamDataError) as excinfo:
        chain.get_price_history("MSFT")
    assert [a["source"] for a in excinfo.value.attempts] == ["live", "backup"]
    assert "All sources failed" in str(excinfo.value)


def test_source_chain_requires_sources() -> None:
    with pytest.raises(ValueError):
        SourceChain([])


def test_cache_lru_eviction() -> None:
    cache = InMemoryCache(ttl_seconds=10, max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") is not None
    cache.set("c", 3)
    assert cache.get("b") is None
    assert len(cache) == 2


def test_cached_source_fresh_refresh_and_stale_fallback() -> None:
    clock = _Clock()
    cache = InMemoryCache(ttl_seconds=60, clock=clock)
    upstream = StubSource([random_walk("AAPL", n=20)])
    cached = CachedPriceSource(upstream, cache)

    first = cached.get_price_history("AAPL")
    assert first.fallback is None
    cached.get_price_history("AAPL")
    assert upstream.calls["AAPL"] == 1

    clock.now += 61
    cached.get_price_history("AAPL")
    assert upstream.calls["AAPL"] == 2

    clock.now += 61
    upstream.failing["AAPL"] = "timeout"
    stale = cached.get_price_history("AAPL")
    np.testing.assert_array_equal(stale.prices, first.prices)
    assert stale.fallback.startswith("stale cache (61s old)")
    assert "timeout" in stale.fallback

    with pytest.raises(UpstreamDataError, match="unknown ticker"):
        cached.get_price_history("MSFT")


def test_fetch_histories_collects_failures() -> None:
    source = StubSource(
        [random_walk("A", n=10), random_walk("B", n=10, seed=1)],
        failing={"C": "delisted"},
    )
    report = fetch_histories(source, ["B", "C", "A", "B"], max_workers=3)
    assert [s.ticker for s in report.ordered(["A", "B", "C"])] == ["A", "B"]
    assert report.failures == {"C": "delisted"}
    assert fetch_histories(source, []).series == {}


def test_fetch_histories_reports_fallbacks() -> None:
    clock = _Clock()
    upstream = StubSource([random_walk("A", n=10), random_walk("B", n=10, seed=1)])
    cached = CachedPriceSource(upstream, InMemoryCache(ttl_seconds=10, clock=clock))
    assert fetch_histories(cached, ["A", "B"]).fallbacks == {}

    clock.now += 100
    upstream.failing["A"] = "timeout"
    report = fetch_histories(cached, ["A", "B"])
    assert set(report.series) == {"A", "B"}
    assert list(report.fallbacks) == ["A"]
    assert "stale cache" in report.fallbacks["A"]


class _LowerCaseSource:
    def get_price_history(self, ticker: str):
        return random_walk(ticker.lower(), n=10)


def test_fetch_histories_labels_by_requested_ticker() -> None:
    report = fetch_histories(_LowerCaseSource(), ["AAPL", "MSFT"])
    assert [s.ticker for s in report.ordered(["AAPL", "MSFT"])] == ["AAPL", "MSFT"]
