"""Annualised mean/covariance estimators and the covariance model registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from ..data.series import ReturnPanel
from ..utils import mirror_upper

CovarianceFunction = Callable[..., np.ndarray]

_COVARIANCE_REGISTRY: Dict[str, CovarianceFunction] = {}


def register_cov_model(name: str, fn: CovarianceFunction) -> None:
    key = str(name).strip().lower()
    if not key:
        raise ValueError("Covariance model name must be a non-empty string")
    if not callable(fn):
        raise TypeError("Covariance model must be callable")
    _COVARIANCE_REGISTRY[key] = fn


def get_available_cov_models() -> List[str]:
    return sorted(_COVARIANCE_REGISTRY.keys())


def _sample_cov(returns: np.ndarray) -> np.ndarray:
    """Population covariance (divide by T), upper triangle mirrored."""

    X = np.asarray(returns, dtype=float)
    if X.size == 0:
        return np.zeros((X.shape[1] if X.ndim == 2 else 0,) * 2, dtype=float)
    Xc = X - X.mean(axis=0, keepdims=True)
    cov = (Xc.T @ Xc) / X.shape[0]
    return mirror_upper(cov)


def ewma_cov(returns: np.ndarray, span: int = 60) -> np.ndarray:
    """Compute an exponentially weighted covariance matrix."""

    if span <= 1:
        raise ValueError("span must be greater than one for EWMA covariance")

    X = np.asarray(returns, dtype=float)
    lam = max(1.0 - 2.0 / (1.0 + span), 0.0)
    demeaned = X - X.mean(axis=0, keepdims=True)
    cov = np.zeros((demeaned.shape[1], demeaned.shape[1]), dtype=float)
    for row in demeaned:
        cov = lam * cov + (1.0 - lam) * np.outer(row, row)
    return mirror_upper(cov)


def _lw_cov(returns: np.ndarray) -> np.ndarray:
    """Ledoit-Wolf shrinkage toward a scaled identity."""

    X = np.asarray(returns, dtype=float)
    T, N = X.shape
    if T <= 1:
        return np.eye(N, dtype=float)
    Xc = X - X.mean(axis=0, keepdims=True)
    S = (Xc.T @ Xc) / T
    mu = np.trace(S) / N
    F = mu * np.eye(N, dtype=float)
    X2 = Xc ** 2
    pi_hat = np.sum((X2.T @ X2) / T - S ** 2)
    gamma_hat = np.linalg.norm(S - F, ord="fro") ** 2
    kappa = max(0.0, min(1.0, (pi_hat / T) / max(gamma_hat, 1e-18)))
    return mirror_upper((1 - kappa) * S + kappa * F)


def _ewma_adapter(returns: np.ndarray, *, span: Optional[int] = None, **_: Any) -> np.ndarray:
    return ewma_cov(np.asarray(returns, dtype=float), span=int(span or 60))


register_cov_model("sample", lambda returns, **_: _sample_cov(returns))
register_cov_model("lw", lambda returns, **_: _lw_cov(returns))
register_cov_model("ewma", _ewma_adapter)


@dataclass(frozen=True)
class Moments:
    """Annualised expected returns and covariance for an ordered ticker list."""

    tickers: Tuple[str, ...]
    mean: np.ndarray
    cov: np.ndarray

    def __post_init__(self) -> None:
        mean = np.asarray(self.mean, dtype=float).reshape(-1)
        cov = np.asarray(self.cov, dtype=float)
        n = len(self.tickers)
        if mean.shape != (n,) or cov.shape != (n, n):
            raise ValueError("Moment shapes do not match the ticker list")
        object.__setattr__(self, "tickers", tuple(self.tickers))
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "cov", cov)

    def subset(self, tickers: Tuple[str, ...]) -> "Moments":
        idx = [self.tickers.index(t) for t in tickers]
        return Moments(tickers=tuple(tickers), mean=self.mean[idx], cov=self.cov[np.ix_(idx, idx)])


def estimate_covariance(returns: np.ndarray, cov_model: str = "sample", **params: Any) -> np.ndarray:
    key = str(cov_model).strip().lower()
    fn = _COVARIANCE_REGISTRY.get(key)
    if fn is None:
        raise ValueError(
            f"Unknown covariance model '{cov_model}'. Available: {', '.join(get_available_cov_models())}"
        )
    return np.asarray(fn(np.asarray(returns, dtype=float), **params), dtype=float)


def estimate_moments(
    panel: ReturnPanel,
    trading_days: int = 252,
    cov_model: str = "sample",
    **params: Any,
) -> Moments:
    daily = np.asarray(panel.matrix, dtype=float)
    if daily.shape[0] == 0:
        raise ValueError("Cannot estimate moments from an empty return panel")
    mean = daily.mean(axis=0) * trading_days
    cov = estimate_covariance(daily, cov_model, **params) * trading_days
    return Moments(tickers=panel.tickers, mean=mean, cov=cov)


__all__ = [
    "Moments",
    "estimate_covariance",
    "estimate_moments",
    "ewma_cov",
    "get_available_cov_models",
    "register_cov_model",
]
