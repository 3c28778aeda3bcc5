from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

_TOLERANCE = 1e-12


@dataclass(frozen=True)
class ConstraintSet:
    max_asset_weight: Optional[float] = None
    max_sector_weight: Optional[float] = None

    def __post_init__(self) -> None:
        for name in ("max_asset_weight", "max_sector_weight"):
            value = getattr(self, name)
            if value is None:
                continue
            if not (0.0 < float(value) <= 1.0):
                raise ValueError(f"{name} must lie in (0, 1]")
            object.__setattr__(self, name, float(value))

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, object]]) -> "ConstraintSet":
        if not mapping:
            return cls()
        asset = mapping.get("max_asset_weight", mapping.get("maxAssetWeight"))
        sector = mapping.get("max_sector_weight", mapping.get("maxSectorWeight"))
        return cls(
            max_asset_weight=float(asset) if asset is not None else None,
            max_sector_weight=float(sector) if sector is not None else None,
        )

    def is_unconstrained(self) -> bool:
        return self.max_asset_weight is None and self.max_sector_weight is None

    def describe(self) -> str:
        parts = []
        if self.max_asset_weight is not None:
            parts.append(f"max_asset_weight={self.max_asset_weight:g}")
        if self.max_sector_weight is not None:
            parts.append(f"max_sector_weight={self.max_sector_weight:g}")
        return ", ".join(parts) or "unconstrained"


def sector_membership(
    tickers: Sequence[str],
    sectors: Optional[Mapping[str, str]],
) -> Tuple[List[str], np.ndarray]:
    """Return sector labels and an ``(n_assets, n_sectors)`` one-hot matrix."""

    lookup = dict(sectors or {})
    labels = [str(lookup.get(ticker) or "Unknown") for ticker in tickers]
    names = sorted(set(labels))
    index = {name: i for i, name in enumerate(names)}
    matrix = np.zeros((len(tickers), len(names)), dtype=float)
    for row, label in enumerate(labels):
        matrix[row, index[label]] = 1.0
    return names, matrix


def sector_weights(
    weights: Mapping[str, float],
    sectors: Mapping[str, str],
) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for ticker, weight in weights.items():
        sector = sectors.get(ticker) or "Unknown"
        totals[sector] = totals.get(sector, 0.0) + float(weight)
    return totals


def feasible_mask(
    weights: np.ndarray,
    constraints: Optional[ConstraintSet],
    membership: Optional[np.ndarray] = None,
    tol: float = _TOLERANCE,
) -> np.ndarray:
    """Boolean mask over rows of ``weights`` that satisfy ``constraints``."""

    block = np.atleast_2d(np.asarray(weights, dtype=float))
    mask = np.ones(block.shape[0], dtype=bool)
    if constraints is None:
        return mask
    if constraints.max_asset_weight is not None:
        mask &= block.max(axis=1) <= constraints.max_asset_weight + tol
    if constraints.max_sector_weight is not None and membership is not None:
        by_sector = block @ membership
        mask &= by_sector.max(axis=1) <= constraints.max_sector_weight + tol
    return mask


__all__ = ["ConstraintSet", "feasible_mask", "sector_membership", "sector_weights"]
