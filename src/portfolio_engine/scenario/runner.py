"""Scenario runner for applying sector return multipliers to a portfolio."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..assets import validate_allocation


@dataclass(frozen=True)
class Scenario:
    """A named macro shock expressed as per-sector return multipliers."""

    id: str
    name: str
    description: str = ""
    impact: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        cleaned: Dict[str, float] = {}
        for sector, raw in dict(self.impact).items():
            value = float(raw)
            if not math.isfinite(value) or value < 0.0:
                raise ValueError(
                    f"Scenario '{self.id}' multiplier for '{sector}' must be finite and non-negative"
                )
            cleaned[str(sector)] = value
        object.__setattr__(self, "impact", cleaned)

    def multiplier(self, sector: Optional[str]) -> float:
        return float(self.impact.get(sector or "Unknown", 1.0))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Scenario":
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name", raw["id"])),
            description=str(raw.get("description", "")),
            impact=dict(raw.get("impact") or {}),
        )


@dataclass(frozen=True)
class SectorImpact:
    sector: str
    weight: float
    multiplier: float
    original_return: float
    scenario_return: float


@dataclass(frozen=True)
class ScenarioResult:
    """Result from running a stress scenario."""

    scenario_id: str
    name: str
    original_return: float
    scenario_return: float
    impact_percentage: float
    by_sector: List[SectorImpact] = field(default_factory=list)
    asset_returns: Mapping[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "name": self.name,
            "original_return": self.original_return,
            "scenario_return": self.scenario_return,
            "impact_percentage": self.impact_percentage,
            "by_sector": [asdict(item) for item in self.by_sector],
            "asset_returns": dict(self.asset_returns),
        }


def run_scenario(
    holdings: Mapping[str, float],
    expected_returns: Mapping[str, float],
    scenario: Scenario,
    sectors: Optional[Mapping[str, str]] = None,
) -> ScenarioResult:
    """Apply ``scenario`` to each holding's expected annual return.

    ``impact_percentage`` is the difference between the shocked and the
    original portfolio return, both expressed as decimal annual returns.
    """

    weights = validate_allocation(holdings)
    lookup = dict(sectors or {})
    missing = [t for t, w in weights.items() if w > 0.0 and t not in expected_returns]
    if missing:
        raise KeyError(f"No expected return for: {', '.join(sorted(missing))}")
    original = 0.0
    shocked = 0.0
    per_sector: Dict[str, List[float]] = {}
    asset_returns: Dict[str, float] = {}
    for ticker, weight in weights.items():
        mu = float(expected_returns.get(ticker, 0.0))
        sector = lookup.get(ticker) or "Unknown"
        factor = scenario.multiplier(sector)
        asset_returns[ticker] = mu * factor
        original += weight * mu
        shocked += weight * mu * factor
        bucket = per_sector.setdefault(sector, [0.0, 0.0, 0.0])
        bucket[0] += weight
        bucket[1] += weight * mu
        bucket[2] += weight * mu * factor
    breakdown = [
        SectorImpact(
            sector=sector,
            weight=values[0],
            multiplier=scenario.multiplier(sector),
            original_return=values[1],
            scenario_return=values[2],
        )
        for sector, values in sorted(per_sector.items(), key=lambda item: -item[1][0])
    ]
    return ScenarioResult(
        scenario_id=scenario.id,
        name=scenario.name,
        original_return=original,
        scenario_return=shocked,
        impact_percentage=shocked - original,
        by_sector=breakdown,
        asset_returns=asset_returns,
    )


class ScenarioRunner:
    """Apply catalogue scenarios to one portfolio."""

    def __init__(
        self,
        holdings: Mapping[str, float],
        expected_returns: Mapping[str, float],
        *,
        sectors: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._holdings = validate_allocation(holdings)
        self._expected = {str(k): float(v) for k, v in expected_returns.items()}
        self._sectors = dict(sectors or {})

    def run(self, scenario: Scenario) -> ScenarioResult:
        return run_scenario(self._holdings, self._expected, scenario, self._sectors)

    def run_all(self, scenarios: Iterable[Scenario]) -> List[ScenarioResult]:
        return [self.run(scenario) for scenario in scenarios]
