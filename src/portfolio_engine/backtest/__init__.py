"""Backtesting utilities for portfolio allocations."""

from .backtest import BacktestResult, compute_drawdown_events, max_drawdown, run_backtest

__all__ = ["BacktestResult", "compute_drawdown_events", "max_drawdown", "run_backtest"]
