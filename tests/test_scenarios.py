from pathlib import Path

import pytest

from portfolio_engine.scenario.catalog import get_scenario, load_scenarios
from portfolio_engine.scenario.runner import Scenario, ScenarioRunner, run_scenario

HOLDINGS = {"AAPL": 0.5, "XOM": 0.3, "JPM": 0.2}
EXPECTED = {"AAPL": 0.20, "XOM": 0.10, "JPM": 0.08}
SECTORS = {"AAPL": "Technology", "XOM": "Energy", "JPM": "Financial Services"}


def test_packaged_catalogue() -> None:
    catalogue = load_scenarios()
    assert list(catalogue) == ["tech_crash", "oil_shock", "interest_hike", "inflation_shock", "stagflation"]
    assert catalogue["tech_crash"].multiplier("Technology") == pytest.approx(0.65)
    assert catalogue["tech_crash"].multiplier("Energy") == 1.0
    with pytest.raises(KeyError, match="Available"):
        get_scenario("alien_invasion")


def test_identity_scenario_has_zero_impact() -> None:
    flat = Scenario("flat", "Flat", impact={"Technology": 1.0, "Energy": 1.0})
    result = run_scenario(HOLDINGS, EXPECTED, flat, SECTORS)
    assert result.impact_percentage == 0.0
    assert result.scenario_return == pytest.approx(result.original_return)


def test_tech_crash_applies_sector_multipliers() -> None:
    result = run_scenario(HOLDINGS, EXPECTED, get_scenario("tech_crash"), SECTORS)
    original = 0.5 * 0.20 + 0.3 * 0.10 + 0.2 * 0.08
    shocked = 0.5 * 0.20 * 0.65 + 0.3 * 0.10 + 0.2 * 0.08
    assert result.original_return == pytest.approx(original)
    assert result.scenario_return == pytest.approx(shocked)
    assert result.impact_percentage == pytest.approx(shocked - original)
    assert result.asset_returns["AAPL"] == pytest.approx(0.13)
    assert result.by_sector[0].sector == "Technology"
    assert sum(item.weight for item in result.by_sector) == pytest.approx(1.0)


def test_unknown_sector_is_unaffected() -> None:
    result = run_scenario({"ZZZ": 1.0}, {"ZZZ": 0.1}, get_scenario("stagflation"))
    assert result.impact_percentage == 0.0
    assert result.by_sector[0].sector == "Unknown"


def test_missing_expected_return() -> None:
    with pytest.raises(KeyError, match="No expected return"):
        run_scenario({"AAPL": 1.0}, {}, get_scenario("oil_shock"))


def test_runner_runs_all() -> None:
    runner = ScenarioRunner(HOLDINGS, EXPECTED, sectors=SECTORS)
    results = runner.run_all(load_scenarios().values())
    assert [r.scenario_id for r in results][0] == "tech_crash"
    assert len(results) == 5
    payload = results[1].to_dict()
    assert payload["name"] == "Oil Price Spike"
    assert payload["impact_percentage"] > 0


def test_negative_multiplier_rejected() -> None:
    with pytest.raises(ValueError, match="non-negative"):
        Scenario("bad", "Bad", impact={"Energy": -1.0})


def test_custom_catalogue_file(tmp_path: Path) -> None:
    path = tmp_path / "custom.yaml"
    path.write_text(
        "scenarios:\n"
        "  - id: crypto_winter\n"
        "    name: Crypto Winter\n"
        "    impact:\n"
        "      Crypto: 0.3\n",
        encoding="utf-8",
    )
    catalogue = load_scenarios(path)
    assert catalogue["crypto_winter"].multiplier("Crypto") == pytest.approx(0.3)
    path.write_text("scenarios:\n  - id: a\n  - id: a\n", encoding="utf-8")
    with pytest.raises(ValueError, match="duplicate"):
        load_scenarios(path)
