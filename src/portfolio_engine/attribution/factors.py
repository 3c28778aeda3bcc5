"""Fama-French style three-factor regression of portfolio returns."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ..data.series import PriceSeries, build_return_panel
from ..errors import InsufficientHistoryError

FACTOR_NAMES: Tuple[str, ...] = ("market", "smb", "hml")


@dataclass(frozen=True)
class FactorSeries:
    """Daily factor returns: market excess, small-minus-big, high-minus-low."""

    market: np.ndarray
    smb: np.ndarray
    hml: np.ndarray
    dates: Optional[Tuple[Any, ...]] = None

    def __post_init__(self) -> None:
        arrays = [np.asarray(getattr(self, name), dtype=float).reshape(-1) for name in FACTOR_NAMES]
        if len({a.size for a in arrays}) != 1:
            raise ValueError("Factor series must share one length")
        for name, arr in zip(FACTOR_NAMES, arrays):
            if not np.all(np.isfinite(arr)):
                raise ValueError(f"Factor '{name}' contains non-finite values")
            object.__setattr__(self, name, arr)
        if self.dates is not None and len(self.dates) != arrays[0].size:
            raise ValueError("Factor dates must match factor length")

    def __len__(self) -> int:
        return int(self.market.size)

    def matrix(self) -> np.ndarray:
        return np.column_stack([self.market, self.smb, self.hml])


@dataclass(frozen=True)
class FactorExposures:
    beta: float
    smb: float
    hml: float
    alpha: float
    r_squared: float
    observations: int
    t_stats: Mapping[str, float] = field(default_factory=dict)
    p_values: Mapping[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "beta": self.beta,
            "smb": self.smb,
            "hml": self.hml,
            "alpha": self.alpha,
            "r_squared": self.r_squared,
            "observations": self.observations,
            "t_stats": dict(self.t_stats),
            "p_values": dict(self.p_values),
        }


def _ols(design: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, float]:
    n_obs = design.shape[0]
    coef, *_ = np.linalg.lstsq(design, y, rcond=None)
    fitted = design @ coef
    residuals = y - fitted
    dof = max(n_obs - design.shape[1], 1)
    sigma2 = float(np.dot(residuals, residuals) / dof)
    xtx_inv = np.linalg.pinv(design.T @ design)
    std_err = np.sqrt(np.maximum(np.diag(xtx_inv) * sigma2, 0.0))
    t_stats = np.divide(coef, std_err, out=np.zeros_like(coef), where=std_err > 1e-12)
    p_values = np.where(std_err > 1e-12, 2.0 * stats.t.sf(np.abs(t_stats), dof), 1.0)
    centred = y - y.mean()
    ss_tot = float(np.dot(centred, centred))
    r_squared = 1.0 - float(np.dot(residuals, residuals)) / ss_tot if ss_tot > 1e-18 else 0.0
    return coef, t_stats, p_values, r_squared


def _join_on_dates(
    port: np.ndarray,
    dates: Sequence[Any],
    factors: FactorSeries,
) -> Tuple[np.ndarray, np.ndarray]:
    if len(dates) != port.size:
        raise ValueError("Portfolio return dates must match portfolio return length")
    left = pd.Series(port, index=pd.to_datetime(list(dates)), name="portfolio")
    right = pd.DataFrame(factors.matrix(), index=pd.to_datetime(list(factors.dates)), columns=list(FACTOR_NAMES))
    if left.index.has_duplicates or right.index.has_duplicates:
        raise ValueError("Return dates must be unique")
    joined = pd.concat([left, right], axis=1, join="inner").sort_index()
    return joined["portfolio"].to_numpy(dtype=float), joined[list(FACTOR_NAMES)].to_numpy(dtype=float)


def analyze_factors(
    portfolio_returns: np.ndarray,
    factors: FactorSeries,
    risk_free_rate: float = 0.0,
    min_observations: int = 252,
    trading_days: int = 252,
    dates: Optional[Sequence[Any]] = None,
) -> FactorExposures:
    """Regress daily portfolio excess returns on the three factors.

    When ``dates`` are given and the factors carry dates too, the two sides are
    inner-joined on date, so assets and proxies on different trading calendars
    are paired by day. Otherwise both inputs are aligned to the shorter length
    by dropping their oldest observations. The loadings are reported whatever
    the quality of fit.
    """

    port = np.asarray(portfolio_returns, dtype=float).reshape(-1)
    if dates is not None and factors.dates is not None:
        port, x_full = _join_on_dates(port, dates, factors)
    else:
        x_full = factors.matrix()
    length = min(port.size, x_full.shape[0])
    if length < min_observations:
        raise InsufficientHistoryError(None, length, min_observations)
    y = port[port.size - length :] - risk_free_rate / trading_days
    x = x_full[x_full.shape[0] - length :]
    design = np.column_stack([np.ones(length, dtype=float), x])
    coef, t_stats, p_values, r_squared = _ols(design, y)
    labels = ("alpha",) + FACTOR_NAMES
    return FactorExposures(
        beta=float(coef[1]),
        smb=float(coef[2]),
        hml=float(coef[3]),
        alpha=float(coef[0] * trading_days),
        r_squared=float(r_squared),
        observations=int(length),
        t_stats={name: float(v) for name, v in zip(labels, t_stats)},
        p_values={name: float(v) for name, v in zip(labels, p_values)},
    )


def factor_series_from_proxies(
    prices: Mapping[str, PriceSeries],
    market: str,
    small: str,
    large: str,
    value: str,
    growth: str,
    risk_free_rate: float = 0.0,
    min_observations: int = 2,
    trading_days: int = 252,
) -> FactorSeries:
    """Build factor returns from proxy price series (e.g. index ETFs).

    ``market`` is the market excess return, ``smb`` is small minus large and
    ``hml`` is value minus growth, all in daily simple returns.
    """

    order: Sequence[str] = (market, small, large, value, growth)
    unique = list(dict.fromkeys(order))
    missing = [t for t in unique if t not in prices]
    if missing:
        raise KeyError(f"Missing proxy price series: {', '.join(missing)}")
    panel = build_return_panel([prices[t] for t in unique], min_observations=min_observations)
    simple = np.expm1(panel.matrix)
    col = {t: simple[:, i] for i, t in enumerate(panel.tickers)}
    return FactorSeries(
        market=col[market] - risk_free_rate / trading_days,
        smb=col[small] - col[large],
        hml=col[value] - col[growth],
        dates=panel.dates,
    )


__all__ = [
    "FACTOR_NAMES",
    "FactorExposures",
    "FactorSeries",
    "analyze_factors",
    "factor_series_from_proxies",
]
