"""Asset reference data and allocation validation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Literal, Mapping, Sequence

import numpy as np

from .errors import InvalidAllocationError

AssetClass = Literal["EQUITY", "CRYPTO", "BENCHMARK"]

ALLOCATION_TOLERANCE = 1e-3


@dataclass(frozen=True)
class Asset:
    ticker: str
    name: str = ""
    country: str = ""
    sector: str = "Unknown"
    asset_class: AssetClass = "EQUITY"

    def __post_init__(self) -> None:
        if not str(self.ticker).strip():
            raise ValueError("ticker must be a non-empty string")


def sector_lookup(assets: Sequence[Asset]) -> Dict[str, str]:
    return {asset.ticker: asset.sector or "Unknown" for asset in assets}


def validate_allocation(
    allocation: Mapping[str, float],
    *,
    tolerance: float = ALLOCATION_TOLERANCE,
) -> Dict[str, float]:
    """Return ``allocation`` as a plain dict after enforcing the weight contract.

    Weights must be finite, non-negative (no shorts) and sum to one within
    ``tolerance``.
    """

    if not allocation:
        raise InvalidAllocationError("Allocation is empty")
    weights: Dict[str, float] = {}
    for ticker, raw in allocation.items():
        value = float(raw)
        if not math.isfinite(value):
            raise InvalidAllocationError(f"Weight for '{ticker}' is not finite")
        if value < 0.0:
            raise InvalidAllocationError(
                f"Weight for '{ticker}' is negative ({value:.6f}); short positions are not supported"
            )
        weights[str(ticker)] = value
    total = math.fsum(weights.values())
    if abs(total - 1.0) > tolerance:
        raise InvalidAllocationError(f"Weights must sum to 1.0 (got {total:.6f})")
    return weights


def allocation_from_percentages(
    percentages: Mapping[str, float],
    *,
    tolerance: float = 1.0,
) -> Dict[str, float]:
    """Convert percent weights that sum to 100 into fractional weights."""

    total = math.fsum(float(v) for v in percentages.values())
    if abs(total - 100.0) > tolerance:
        raise InvalidAllocationError(f"Weights must sum to 100 (got {total:.4f})")
    fractions = {str(k): float(v) / total for k, v in percentages.items()}
    return validate_allocation(fractions)


def weight_vector(allocation: Mapping[str, float], tickers: Sequence[str]) -> np.ndarray:
    """Order ``allocation`` along ``tickers``; every held ticker must be present."""

    missing = [ticker for ticker, weight in allocation.items() if weight > 0.0 and ticker not in tickers]
    if missing:
        raise InvalidAllocationError(
            f"Allocation references tickers outside the analysed universe: {', '.join(sorted(missing))}"
        )
    return np.array([float(allocation.get(ticker, 0.0)) for ticker in tickers], dtype=float)


__all__ = [
    "ALLOCATION_TOLERANCE",
    "Asset",
    "AssetClass",
    "allocation_from_percentages",
    "sector_lookup",
    "validate_allocation",
    "weight_vector",
]
