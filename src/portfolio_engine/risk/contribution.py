from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

import numpy as np

from ..assets import validate_allocation, weight_vector
from .covariance import Moments

_VOL_EPS = 1e-12


@dataclass(frozen=True)
class PortfolioStats:
    weights: Mapping[str, float]
    expected_return: float
    volatility: float
    sharpe_ratio: float
    risk_free_rate: float = 0.0
    extra: Mapping[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "weights": {k: float(v) for k, v in self.weights.items()},
            "expected_return": float(self.expected_return),
            "volatility": float(self.volatility),
            "sharpe_ratio": float(self.sharpe_ratio),
            "risk_free_rate": float(self.risk_free_rate),
        }
        out.update({k: float(v) for k, v in self.extra.items()})
        return out


@dataclass(frozen=True)
class ContributionData:
    ticker: str
    weight: float
    return_contribution: float
    risk_contribution: float
    risk_share: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "weight": float(self.weight),
            "return_contribution": float(self.return_contribution),
            "risk_contribution": float(self.risk_contribution),
            "risk_share": float(self.risk_share),
        }


def sharpe_ratio(expected_return: float, volatility: float, risk_free_rate: float, floor: float = 1e-6) -> float:
    if volatility <= floor:
        return 0.0
    return float((expected_return - risk_free_rate) / volatility)


def portfolio_stats(
    tickers: Sequence[str],
    weights: np.ndarray,
    mean: np.ndarray,
    cov: np.ndarray,
    risk_free_rate: float,
    volatility_floor: float = 1e-6,
) -> PortfolioStats:
    w = np.asarray(weights, dtype=float)
    ret = float(w @ np.asarray(mean, dtype=float))
    vol = float(np.sqrt(max(0.0, float(w @ np.asarray(cov, dtype=float) @ w))))
    return PortfolioStats(
        weights={t: float(x) for t, x in zip(tickers, w)},
        expected_return=ret,
        volatility=vol,
        sharpe_ratio=sharpe_ratio(ret, vol, risk_free_rate, volatility_floor),
        risk_free_rate=float(risk_free_rate),
    )


def risk_return_contribution(moments: Moments, allocation: Mapping[str, float]) -> List[ContributionData]:
    """Euler decomposition of portfolio return and volatility by asset.

    ``sum(return_contribution)`` equals the portfolio return and
    ``sum(risk_contribution)`` equals its volatility. When the volatility is
    zero every risk contribution is reported as zero.
    """

    w = weight_vector(validate_allocation(allocation), moments.tickers)
    mu = moments.mean
    marginal = moments.cov @ w
    variance = max(0.0, float(w @ marginal))
    vol = float(np.sqrt(variance))
    ret_contrib = w * mu
    if vol > _VOL_EPS:
        risk_contrib = w * marginal / vol
        share = risk_contrib / vol
    else:
        risk_contrib = np.zeros_like(w)
        share = np.zeros_like(w)
    return [
        ContributionData(
            ticker=ticker,
            weight=float(w[i]),
            return_contribution=float(ret_contrib[i]),
            risk_contribution=float(risk_contrib[i]),
            risk_share=float(share[i]),
        )
        for i, ticker in enumerate(moments.tickers)
    ]


__all__ = [
    "ContributionData",
    "PortfolioStats",
    "portfolio_stats",
    "risk_return_contribution",
    "sharpe_ratio",
]
