from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping

import numpy as np

from ..assets import validate_allocation, weight_vector
from ..data.series import ReturnPanel
from ..errors import InsufficientHistoryError


@dataclass(frozen=True)
class VaRResult:
    var95: float
    cvar95: float
    portfolio_value: float
    confidence: float
    observations: int
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def portfolio_simple_returns(panel: ReturnPanel, weights: np.ndarray) -> np.ndarray:
    """Daily simple portfolio returns from per-asset log returns."""

    simple = np.expm1(np.asarray(panel.matrix, dtype=float))
    return simple @ np.asarray(weights, dtype=float)


def historical_var(
    panel: ReturnPanel,
    allocation: Mapping[str, float],
    portfolio_value: float = 10_000.0,
    confidence: float = 0.95,
    min_observations: int = 252,
    currency: str = "USD",
) -> VaRResult:
    """Historical-simulation value at risk and expected shortfall.

    Both figures are positive losses in the currency of ``portfolio_value``.
    """

    if not (0.5 < confidence < 1.0):
        raise ValueError("confidence must lie in (0.5, 1)")
    if portfolio_value <= 0:
        raise ValueError("portfolio_value must be positive")
    if panel.observations < min_observations:
        raise InsufficientHistoryError(None, panel.observations, min_observations)
    weights = weight_vector(validate_allocation(allocation), panel.tickers)
    returns = portfolio_simple_returns(panel, weights)
    cutoff = float(np.percentile(returns, (1.0 - confidence) * 100.0))
    tail = returns[returns <= cutoff]
    var = -cutoff * portfolio_value
    cvar = -float(tail.mean()) * portfolio_value if tail.size else var
    # the tail mean never sits above the cutoff
    cvar = max(cvar, var)
    return VaRResult(
        var95=float(var),
        cvar95=float(cvar),
        portfolio_value=float(portfolio_value),
        confidence=float(confidence),
        observations=int(returns.size),
        currency=currency,
    )


__all__ = ["VaRResult", "historical_var", "portfolio_simple_returns"]
