from __future__ import annotations

from importlib import resources
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

from .runner import Scenario

_PACKAGED = "scenarios.yaml"


def _parse(text: str, origin: str) -> Dict[str, Scenario]:
    data = yaml.safe_load(text) or {}
    entries = data.get("scenarios") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError(f"{origin}: expected a list of scenarios")
    catalogue: Dict[str, Scenario] = {}
    for entry in entries:
        if not isinstance(entry, dict) or "id" not in entry:
            raise ValueError(f"{origin}: every scenario needs an 'id'")
        scenario = Scenario.from_mapping(entry)
        if scenario.id in catalogue:
            raise ValueError(f"{origin}: duplicate scenario id '{scenario.id}'")
        catalogue[scenario.id] = scenario
    return catalogue


def load_scenarios(path: Optional[Union[str, Path]] = None) -> Dict[str, Scenario]:
    """Load the packaged scenario catalogue, or a user YAML file with the same shape."""

    if path is None:
        text = resources.files(__package__).joinpath(_PACKAGED).read_text(encoding="utf-8")
        return _parse(text, _PACKAGED)
    source = Path(path)
    return _parse(source.read_text(encoding="utf-8"), str(source))


def get_scenario(scenario_id: str, path: Optional[Union[str, Path]] = None) -> Scenario:
    catalogue = load_scenarios(path)
    try:
        return catalogue[scenario_id]
    except KeyError:
        raise KeyError(
            f"Unknown scenario '{scenario_id}'. Available: {', '.join(sorted(catalogue))}"
        ) from None


__all__ = ["get_scenario", "load_scenarios"]
