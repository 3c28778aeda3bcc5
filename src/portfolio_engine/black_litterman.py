"""Black-Litterman blending of a return prior with relative views.

The posterior mean uses the "update" form::

    mu_BL = prior + tau*C*P' (P*tau*C*P' + Omega)^+ (Q - P*prior)

with ``Omega = diag((1 - c) / c * p_k' (tau*C) p_k)`` for a view of confidence
``c``. A view held with full confidence therefore has zero uncertainty and is
matched exactly. The pseudo-inverse keeps the computation defined when the
covariance is only positive semi-definite up to estimation noise.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy import linalg

from .errors import InvalidViewError

DIRECTIONS = ("outperform", "underperform")


@dataclass(frozen=True)
class View:
    """``asset`` will beat (or trail) ``relative_to`` by ``expected_return_diff`` a year."""

    asset: str
    relative_to: str
    expected_return_diff: float
    confidence: float
    direction: str = "outperform"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "View":
        try:
            return cls(
                asset=str(raw.get("asset", raw.get("asset_ticker_1", ""))).strip(),
                relative_to=str(raw.get("relative_to", raw.get("asset_ticker_2", ""))).strip(),
                expected_return_diff=float(raw["expected_return_diff"]),
                confidence=float(raw["confidence"]),
                direction=str(raw.get("direction", "outperform")).strip().lower(),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidViewError(f"Malformed view {dict(raw)!r}: {exc}") from exc

    @property
    def sign(self) -> float:
        return 1.0 if self.direction == "outperform" else -1.0


def implied_prior(cov: np.ndarray, market_weights: np.ndarray, risk_aversion: float = 2.5) -> np.ndarray:
    """Equilibrium returns ``delta * C * w_mkt``."""

    if risk_aversion <= 0:
        raise ValueError("risk_aversion must be positive")
    w = np.asarray(market_weights, dtype=float).reshape(-1)
    total = float(w.sum())
    if total <= 0 or np.any(w < 0):
        raise ValueError("market weights must be non-negative with a positive total")
    return float(risk_aversion) * (np.asarray(cov, dtype=float) @ (w / total))


def _validate_view(view: View, universe: Mapping[str, int]) -> None:
    if not view.asset or not view.relative_to:
        raise InvalidViewError("A view needs two named assets")
    if view.asset == view.relative_to:
        raise InvalidViewError(f"View compares '{view.asset}' with itself")
    for ticker in (view.asset, view.relative_to):
        if ticker not in universe:
            raise InvalidViewError(f"View references '{ticker}' which is not in the asset universe")
    if view.direction not in DIRECTIONS:
        raise InvalidViewError(f"direction must be one of {', '.join(DIRECTIONS)} (got {view.direction!r})")
    if not (0.0 < view.confidence <= 1.0) or not math.isfinite(view.confidence):
        raise InvalidViewError(f"confidence must lie in (0, 1] (got {view.confidence})")
    if not math.isfinite(view.expected_return_diff):
        raise InvalidViewError("expected_return_diff must be finite")


def view_matrices(tickers: Sequence[str], views: Sequence[View]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return the pick matrix ``P``, spreads ``Q`` and confidences."""

    if not views:
        raise InvalidViewError("At least one view is required")
    universe = {t: i for i, t in enumerate(tickers)}
    P = np.zeros((len(views), len(tickers)), dtype=float)
    Q = np.zeros(len(views), dtype=float)
    conf = np.zeros(len(views), dtype=float)
    for k, view in enumerate(views):
        _validate_view(view, universe)
        P[k, universe[view.asset]] = view.sign
        P[k, universe[view.relative_to]] = -view.sign
        Q[k] = float(view.expected_return_diff)
        conf[k] = float(view.confidence)
    return P, Q, conf


def blend(
    tickers: Sequence[str],
    prior: np.ndarray,
    cov: np.ndarray,
    views: Sequence[View],
    tau: float = 0.05,
) -> np.ndarray:
    if tau <= 0:
        raise ValueError("tau must be positive")
    mu = np.asarray(prior, dtype=float).reshape(-1)
    sigma = np.asarray(cov, dtype=float)
    if mu.shape != (len(tickers),) or sigma.shape != (len(tickers), len(tickers)):
        raise ValueError("prior and covariance must match the ticker list")
    P, Q, conf = view_matrices(tickers, views)
    tau_cov = tau * sigma
    view_var = np.einsum("ij,jk,ik->i", P, tau_cov, P)
    omega = np.diag((1.0 - conf) / conf * np.maximum(view_var, 0.0))
    middle = P @ tau_cov @ P.T + omega
    gain = tau_cov @ P.T @ linalg.pinvh(0.5 * (middle + middle.T))
    return mu + gain @ (Q - P @ mu)


def posterior_returns(
    tickers: Sequence[str],
    historical_mean: np.ndarray,
    cov: np.ndarray,
    views: Sequence[View],
    market_caps: Optional[Mapping[str, float]] = None,
    risk_aversion: float = 2.5,
    tau: float = 0.05,
) -> np.ndarray:
    """Blend views into the implied prior, or the historical mean when no caps are given."""

    if market_caps:
        missing = [t for t in tickers if t not in market_caps]
        if missing:
            raise InvalidViewError(f"Market capitalisation missing for: {', '.join(missing)}")
        weights = np.array([float(market_caps[t]) for t in tickers], dtype=float)
        prior = implied_prior(cov, weights, risk_aversion)
    else:
        prior = np.asarray(historical_mean, dtype=float)
    return blend(tickers, prior, cov, views, tau=tau)


__all__ = ["DIRECTIONS", "View", "blend", "implied_prior", "posterior_returns", "view_matrices"]
