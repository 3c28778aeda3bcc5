"""Scenario stress testing utilities."""

from .catalog import get_scenario, load_scenarios
from .runner import Scenario, ScenarioResult, ScenarioRunner, SectorImpact, run_scenario

__all__ = [
    "Scenario",
    "ScenarioResult",
    "ScenarioRunner",
    "SectorImpact",
    "get_scenario",
    "load_scenarios",
    "run_scenario",
]
