from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from ..assets import Asset, validate_allocation
from ..constraints import sector_weights

GOOD = "Good"
FAIR = "Fair"
NEEDS_IMPROVEMENT = "Needs Improvement"

_DESCRIPTIONS = {
    GOOD: (
        "This portfolio shows good diversification across various sectors and countries, "
        "which can help manage risk."
    ),
    FAIR: (
        "There is some diversification, but consider adding assets from more sectors or "
        "regions to improve risk distribution."
    ),
    NEEDS_IMPROVEMENT: (
        "This portfolio is highly concentrated. Increasing the number of assets across "
        "different sectors is recommended to reduce risk."
    ),
}

# (lower bound exclusive, score), checked top-down
_HIGH_VOL_BANDS: Tuple[Tuple[float, int], ...] = ((0.35, 9), (0.28, 8), (0.22, 7), (0.18, 6))
_LOW_VOL_BANDS: Tuple[Tuple[float, int], ...] = ((0.10, 3), (0.13, 4))


@dataclass(frozen=True)
class HealthReport:
    grade: str
    description: str
    risk_score: int
    top_sectors: List[Tuple[str, float]] = field(default_factory=list)
    sector_count: int = 0
    country_count: int = 0
    asset_count: int = 0
    crypto_weight: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grade": self.grade,
            "description": self.description,
            "risk_score": self.risk_score,
            "top_sectors": [{"sector": s, "weight": w} for s, w in self.top_sectors],
            "sector_count": self.sector_count,
            "country_count": self.country_count,
            "asset_count": self.asset_count,
            "crypto_weight": self.crypto_weight,
        }


def diversification_grade(sectors: int, countries: int, assets: int) -> str:
    if sectors >= 5 and countries >= 3 and assets >= 10:
        return GOOD
    if sectors >= 3 or countries >= 2:
        return FAIR
    return NEEDS_IMPROVEMENT


def risk_score(volatility: float, crypto_weight: float = 0.0) -> int:
    """Map annualised volatility onto a 1-10 scale, bumped for crypto exposure."""

    score = 5
    for bound, value in _HIGH_VOL_BANDS:
        if volatility > bound:
            score = value
            break
    else:
        for bound, value in _LOW_VOL_BANDS:
            if volatility < bound:
                score = value
                break
    if crypto_weight > 0.2:
        score += 2
    elif crypto_weight > 0.1:
        score += 1
    return max(1, min(10, score))


def health_check(
    holdings: Mapping[str, float],
    assets: Mapping[str, Asset],
    volatility: float,
) -> HealthReport:
    weights = validate_allocation(holdings)
    held = {t: w for t, w in weights.items() if w > 0.0}
    missing = [t for t in held if t not in assets]
    if missing:
        raise KeyError(f"No asset metadata for: {', '.join(sorted(missing))}")
    meta = [assets[t] for t in held]
    sectors = {a.sector or "Unknown" for a in meta}
    countries = {a.country for a in meta if a.country}
    grade = diversification_grade(len(sectors), len(countries), len(meta))
    by_sector = sector_weights(held, {a.ticker: a.sector for a in meta})
    top = sorted(by_sector.items(), key=lambda item: (-item[1], item[0]))[:3]
    crypto = sum(held[a.ticker] for a in meta if a.asset_class == "CRYPTO")
    return HealthReport(
        grade=grade,
        description=_DESCRIPTIONS[grade],
        risk_score=risk_score(float(volatility), crypto),
        top_sectors=[(s, float(w)) for s, w in top],
        sector_count=len(sectors),
        country_count=len(countries),
        asset_count=len(meta),
        crypto_weight=float(crypto),
    )


__all__ = ["FAIR", "GOOD", "HealthReport", "NEEDS_IMPROVEMENT", "diversification_grade", "health_check", "risk_score"]
