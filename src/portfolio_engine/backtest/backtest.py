"""Historical buy-and-hold backtest of an allocation against a benchmark."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..assets import validate_allocation
from ..data.series import PriceSeries, align_prices
from ..errors import InsufficientHistoryError

logger = logging.getLogger(__name__)

SUPPORTED_YEARS = (1, 3, 5)


@dataclass(frozen=True)
class BacktestResult:
    dates: Tuple[date, ...]
    portfolio_values: np.ndarray
    benchmark_values: np.ndarray
    total_return: float
    benchmark_return: float
    max_drawdown: float
    benchmark: str
    years: int
    initial_value: float
    currency: str = "USD"
    rebalanced: bool = False
    rebalance_every: Optional[int] = None
    drawdowns: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dates": [d.isoformat() for d in self.dates],
            "portfolio_values": [float(v) for v in self.portfolio_values],
            "benchmark_values": [float(v) for v in self.benchmark_values],
            "total_return": self.total_return,
            "benchmark_return": self.benchmark_return,
            "max_drawdown": self.max_drawdown,
            "benchmark": self.benchmark,
            "years": self.years,
            "initial_value": self.initial_value,
            "currency": self.currency,
            "rebalanced": self.rebalanced,
            "rebalance_every": self.rebalance_every,
            "drawdowns": [
                {k: (v.isoformat() if isinstance(v, date) else v) for k, v in event.items()}
                for event in self.drawdowns
            ],
        }


def max_drawdown(equity_curve: np.ndarray) -> float:
    """Return the deepest peak-to-trough decline as a fraction in ``[-1, 0]``."""

    equity = np.asarray(equity_curve, dtype=float)
    if equity.size == 0:
        return 0.0
    running_peak = np.maximum.accumulate(equity)
    ratio = np.divide(equity, running_peak, out=np.ones_like(equity), where=running_peak > 0)
    return float(min(0.0, np.min(ratio) - 1.0))


def compute_drawdown_events(equity: np.ndarray, dates: Sequence[Any]) -> List[Dict[str, Any]]:
    """Peak, trough and recovery of every drawdown episode; ``depth`` is negative."""

    curve = np.asarray(equity, dtype=float)
    if curve.size == 0:
        return []
    if len(dates) != curve.size:
        raise ValueError("Dates length must match equity length")
    running_peak = np.maximum.accumulate(curve)
    underwater = 1.0 - np.divide(curve, running_peak, out=np.ones_like(curve), where=running_peak > 0)
    events: List[Dict[str, Any]] = []
    peak_idx: Optional[int] = None
    trough_idx = 0
    for idx, depth in enumerate(underwater):
        if depth > 1e-12:
            if peak_idx is None:
                peak_idx = max(idx - 1, 0)
                trough_idx = idx
            elif depth > underwater[trough_idx]:
                trough_idx = idx
        elif peak_idx is not None:
            events.append(_event(curve, dates, peak_idx, trough_idx, idx))
            peak_idx = None
    if peak_idx is not None:
        events.append(_event(curve, dates, peak_idx, trough_idx, None))
    return events


def _event(
    curve: np.ndarray,
    dates: Sequence[Any],
    peak_idx: int,
    trough_idx: int,
    recovery_idx: Optional[int],
) -> Dict[str, Any]:
    peak_val = float(curve[peak_idx])
    depth = 0.0 if peak_val <= 0 else float(curve[trough_idx] / peak_val - 1.0)
    end = recovery_idx if recovery_idx is not None else len(curve)
    return {
        "peak": dates[peak_idx],
        "trough": dates[trough_idx],
        "recovery": dates[recovery_idx] if recovery_idx is not None else None,
        "depth": depth,
        "length": int(end - peak_idx),
    }


def _window_start(last: pd.Timestamp, years: int) -> pd.Timestamp:
    return last - pd.DateOffset(years=years)


def simulate_holdings(
    prices: np.ndarray,
    weights: np.ndarray,
    initial_value: float,
    rebalance_every: Optional[int] = None,
) -> np.ndarray:
    """Portfolio value path for fixed units, optionally reset to target weights."""

    block = np.asarray(prices, dtype=float)
    w = np.asarray(weights, dtype=float)
    units = initial_value * w / block[0]
    values = np.empty(block.shape[0], dtype=float)
    for t in range(block.shape[0]):
        value = float(units @ block[t])
        values[t] = value
        if rebalance_every and t > 0 and t % rebalance_every == 0:
            units = value * w / block[t]
    return values


def run_backtest(
    prices: Sequence[PriceSeries],
    weights: Mapping[str, float],
    benchmark: PriceSeries,
    years: int = 1,
    initial_value: float = 10_000.0,
    fx_rate: float = 1.0,
    rebalance_every: Optional[int] = None,
    currency: str = "USD",
) -> BacktestResult:
    """Replay ``weights`` over the trailing ``years`` against ``benchmark``.

    Units are bought once at the first common date of the window and held.
    With ``rebalance_every=k`` the holdings are reset to the target weights
    every ``k`` observations instead. Values are scaled by ``fx_rate`` into
    the settlement currency.
    """

    if years not in SUPPORTED_YEARS:
        raise ValueError(f"years must be one of {SUPPORTED_YEARS}")
    if initial_value <= 0:
        raise ValueError("initial_value must be positive")
    if fx_rate <= 0:
        raise ValueError("fx_rate must be positive")
    if rebalance_every is not None and rebalance_every <= 0:
        raise ValueError("rebalance_every must be positive")
    allocation = validate_allocation(weights)
    by_ticker = {series.ticker: series for series in prices}
    held = [t for t, w in allocation.items() if w > 0.0]
    missing = [t for t in held if t not in by_ticker]
    if missing:
        raise InsufficientHistoryError(missing[0], 0, 1, f"No price history for held ticker '{missing[0]}'")
    universe = [by_ticker[t] for t in held]
    bench_name = f"benchmark:{benchmark.ticker}"
    bench_series = PriceSeries(bench_name, benchmark.dates, benchmark.prices)

    joined = align_prices(universe + [bench_series])
    if joined.empty:
        raise InsufficientHistoryError(None, 0, 2, "Price histories share no common dates")
    last = joined.index[-1]
    start = _window_start(last, years)
    for series in universe + [bench_series]:
        if pd.Timestamp(series.dates[0]) > start:
            label = benchmark.ticker if series is bench_series else series.ticker
            available = int(sum(1 for d in series.dates if pd.Timestamp(d) <= last))
            raise InsufficientHistoryError(
                label,
                available,
                int(round(252 * years)),
                f"History for '{label}' starts {series.dates[0]}, after the {years}y window start {start.date()}",
            )
    window = joined.loc[joined.index >= start]
    if len(window) < 2:
        raise InsufficientHistoryError(None, len(window), 2)

    w = np.array([allocation[t] for t in held], dtype=float)
    w = w / w.sum()
    scale = initial_value * fx_rate
    port_values = simulate_holdings(window[held].to_numpy(), w, scale, rebalance_every)
    bench_px = window[bench_name].to_numpy(dtype=float)
    bench_values = scale * bench_px / bench_px[0]
    dates = tuple(ts.date() for ts in window.index)
    logger.debug("Backtest window %s..%s (%d observations)", dates[0], dates[-1], len(dates))
    return BacktestResult(
        dates=dates,
        portfolio_values=port_values,
        benchmark_values=bench_values,
        total_return=float(port_values[-1] / port_values[0] - 1.0),
        benchmark_return=float(bench_values[-1] / bench_values[0] - 1.0),
        max_drawdown=max_drawdown(port_values),
        benchmark=benchmark.ticker,
        years=int(years),
        initial_value=float(scale),
        currency=currency,
        rebalanced=rebalance_every is not None,
        rebalance_every=rebalance_every,
        drawdowns=compute_drawdown_events(port_values, dates),
    )


__all__ = [
    "BacktestResult",
    "SUPPORTED_YEARS",
    "compute_drawdown_events",
    "max_drawdown",
    "run_backtest",
    "simulate_holdings",
]
