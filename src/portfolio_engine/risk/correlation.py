from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import numpy as np

from ..data.series import ReturnPanel
from ..errors import InsufficientAssetsError


@dataclass(frozen=True)
class CorrelationData:
    tickers: Tuple[str, ...]
    matrix: np.ndarray
    unavailable: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tickers": list(self.tickers),
            "matrix": [[float(v) for v in row] for row in self.matrix],
            "unavailable": dict(self.unavailable),
        }

    def pair(self, a: str, b: str) -> float:
        return float(self.matrix[self.tickers.index(a), self.tickers.index(b)])


def _pearson(x: np.ndarray, y: np.ndarray) -> float:
    xc = x - x.mean()
    yc = y - y.mean()
    denom = float(np.sqrt(np.dot(xc, xc) * np.dot(yc, yc)))
    if denom <= 0.0 or not np.isfinite(denom):
        return 0.0
    return float(np.clip(np.dot(xc, yc) / denom, -1.0, 1.0))


def correlation_matrix(panel: ReturnPanel) -> CorrelationData:
    n = len(panel.tickers)
    if n < 2:
        raise InsufficientAssetsError(n)
    data = np.asarray(panel.matrix, dtype=float)
    matrix = np.eye(n, dtype=float)
    for i in range(n):
        for j in range(i + 1, n):
            value = _pearson(data[:, i], data[:, j])
            matrix[i, j] = value
            matrix[j, i] = value
    unavailable: Dict[str, str] = dict(panel.excluded)
    flat: List[str] = [t for k, t in enumerate(panel.tickers) if np.ptp(data[:, k]) == 0.0]
    for ticker in flat:
        unavailable.setdefault(ticker, "zero variance; correlations reported as 0")
    return CorrelationData(tickers=panel.tickers, matrix=matrix, unavailable=unavailable)


__all__ = ["CorrelationData", "correlation_matrix"]
