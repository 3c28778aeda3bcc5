import numpy as np
import pytest

from conftest import constant_growth, random_walk
from portfolio_engine.backtest.backtest import (
    compute_drawdown_events,
    max_drawdown,
    run_backtest,
    simulate_holdings,
)
from portfolio_engine.errors import InsufficientHistoryError


def test_max_drawdown_is_negative_fraction() -> None:
    assert max_drawdown(np.array([100.0, 120.0, 60.0, 130.0])) == pytest.approx(-0.5)
    assert max_drawdown(np.array([1.0, 2.0, 3.0])) == 0.0
    assert max_drawdown(np.array([])) == 0.0


def test_drawdown_events_peak_trough_recovery() -> None:
    events = compute_drawdown_events(np.array([100.0, 90.0, 95.0, 101.0, 80.0]), list("abcde"))
    assert len(events) == 2
    first, second = events
    assert (first["peak"], first["trough"], first["recovery"]) == ("a", "b", "d")
    assert first["depth"] == pytest.approx(-0.1)
    assert first["length"] == 3
    assert second["recovery"] is None
    assert second["depth"] == pytest.approx(80.0 / 101.0 - 1.0)
    with pytest.raises(ValueError):
        compute_drawdown_events(np.array([1.0, 2.0]), ["a"])


def test_simulate_holdings_buy_and_hold_vs_rebalance() -> None:
    prices = np.array([[10.0, 10.0], [20.0, 10.0], [20.0, 20.0]])
    held = simulate_holdings(prices, np.array([0.5, 0.5]), 100.0)
    np.testing.assert_allclose(held, [100.0, 150.0, 200.0])
    rebalanced = simulate_holdings(prices, np.array([0.5, 0.5]), 100.0, rebalance_every=1)
    np.testing.assert_allclose(rebalanced, [100.0, 150.0, 225.0])


def test_buy_and_hold_matches_closed_form() -> None:
    a = constant_growth("A", 600, 0.001)
    b = constant_growth("B", 600, 0.0005)
    bench = constant_growth("SPY", 600, 0.0004)
    result = run_backtest([a, b], {"A": 0.6, "B": 0.4}, bench, years=1, initial_value=10_000)
    steps = len(result.dates) - 1
    expected = 0.6 * np.exp(0.001 * steps) + 0.4 * np.exp(0.0005 * steps) - 1.0
    assert result.total_return == pytest.approx(expected)
    assert result.benchmark_return == pytest.approx(np.exp(0.0004 * steps) - 1.0)
    assert result.portfolio_values[0] == pytest.approx(10_000)
    assert result.max_drawdown == 0.0
    assert result.drawdowns == []
    assert 250 <= len(result.dates) <= 263
    assert (result.dates[-1] - result.dates[0]).days <= 366


def test_drawdown_within_bounds_and_fx_scaling() -> None:
    a = random_walk("A", n=600, mu=-0.001, sigma=0.02, seed=3)
    bench = random_walk("SPY", n=600, seed=4)
    usd = run_backtest([a], {"A": 1.0}, bench, years=1)
    eur = run_backtest([a], {"A": 1.0}, bench, years=1, fx_rate=0.92, currency="EUR")
    assert -1.0 <= usd.max_drawdown <= 0.0
    assert usd.max_drawdown == pytest.approx(min(e["depth"] for e in usd.drawdowns))
    np.testing.assert_allclose(eur.portfolio_values, usd.portfolio_values * 0.92)
    assert eur.total_return == pytest.approx(usd.total_return)
    assert eur.to_dict()["currency"] == "EUR"


def test_benchmark_may_also_be_held() -> None:
    spy = random_walk("SPY", n=600, seed=4)
    other = random_walk("A", n=600, seed=5)
    result = run_backtest([spy, other], {"SPY": 0.5, "A": 0.5}, spy, years=1)
    assert result.benchmark == "SPY"
    assert len(result.portfolio_values) == len(result.benchmark_values)


def test_history_must_cover_window() -> None:
    a = constant_growth("A", 600, 0.001)
    late = constant_growth("NEW", 100, 0.001, start="2021-01-04")
    bench = constant_growth("SPY", 600, 0.0004)
    with pytest.raises(InsufficientHistoryError) as excinfo:
        run_backtest([a, late], {"A": 0.5, "NEW": 0.5}, bench, years=1)
    assert excinfo.value.ticker == "NEW"
    with pytest.raises(InsufficientHistoryError):
        run_backtest([a], {"A": 1.0}, bench, years=3)


def test_backtest_argument_validation() -> None:
    a = constant_growth("A", 300, 0.001)
    bench = constant_growth("SPY", 300, 0.0004)
    with pytest.raises(ValueError, match="years"):
        run_backtest([a], {"A": 1.0}, bench, years=2)
    with pytest.raises(ValueError, match="rebalance_every"):
        run_backtest([a], {"A": 1.0}, bench, rebalance_every=0)
    with pytest.raises(InsufficientHistoryError, match="No price history"):
        run_backtest([a], {"A": 0.5, "B": 0.5}, bench)
