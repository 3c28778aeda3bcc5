from pathlib import Path

import pytest

from portfolio_engine.config import CONFIG_ENV_VAR, EngineSettings, load_settings
from portfolio_engine.errors import ConfigError


def test_defaults() -> None:
    settings = load_settings()
    assert settings.min_history == 252
    assert settings.var_confidence == 0.95
    assert settings.quick_iterations == 2_500
    assert settings.comprehensive_iterations == 5_000
    assert settings.max_simulation_points == 500


def test_yaml_file_and_overrides(tmp_path: Path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("cov-model: lw\nmin_history: 120\nsettlement_currency: EUR\n", encoding="utf-8")
    settings = load_settings(path, overrides={"min_history": 200})
    assert settings.cov_model == "lw"
    assert settings.min_history == 200
    assert settings.settlement_currency == "EUR"


def test_json_file_via_env(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "engine.json"
    path.write_text('{"tau": 0.1}', encoding="utf-8")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    assert load_settings().tau == 0.1


def test_invalid_cov_model(tmp_path: Path) -> None:
    path = tmp_path / "bad_cov.yaml"
    path.write_text("cov_model: imaginary\n", encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_settings(path)
    message = str(excinfo.value)
    assert "Invalid config" in message
    assert "cov_model" in message


def test_bad_ewma_span() -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_settings(overrides={"ewma_span": 1})
    message = str(excinfo.value)
    assert "ewma_span" in message
    assert "greater than or equal to 2" in message


def test_unknown_key_rejected() -> None:
    with pytest.raises(ConfigError, match="lookback"):
        load_settings(overrides={"lookback": 3})


def test_missing_file_and_non_mapping(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="file not found"):
        load_settings(tmp_path / "missing.yaml")
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_settings(path)


def test_settings_are_frozen() -> None:
    settings = EngineSettings()
    with pytest.raises(Exception):
        settings.min_history = 10  # type: ignore[misc]
