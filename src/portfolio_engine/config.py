"""Engine settings and the YAML/JSON loader used by the CLI."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError

TRADING_DAYS = 252
CONFIG_ENV_VAR = "PORTFOLIO_ENGINE_CONFIG"


class EngineSettings(BaseModel):
    """Tunable constants for every analysis the engine runs."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, frozen=True)

    trading_days: int = Field(default=TRADING_DAYS, ge=1)
    min_history: int = Field(default=252, ge=2)
    var_confidence: float = Field(default=0.95, gt=0.5, lt=1.0)
    portfolio_value: float = Field(default=10_000.0, gt=0.0)
    quick_iterations: int = Field(default=2_500, ge=1)
    comprehensive_iterations: int = Field(default=5_000, ge=1)
    max_simulation_points: int = Field(default=500, ge=1)
    chunk_size: int = Field(default=500, ge=1)
    cov_model: str = "sample"
    ewma_span: int = Field(default=60, ge=2)
    risk_aversion: float = Field(default=2.5, gt=0.0)
    tau: float = Field(default=0.05, gt=0.0)
    fetch_workers: int = Field(default=8, ge=1)
    optimizer_workers: Optional[int] = Field(default=None, ge=1)
    cache_ttl_seconds: float = Field(default=6 * 60 * 60, gt=0.0)
    rebalance_threshold: float = Field(default=0.005, ge=0.0, lt=1.0)
    base_currency: str = "USD"
    settlement_currency: str = "USD"
    short_history_policy: Literal["drop", "raise"] = "drop"

    @model_validator(mode="after")
    def _check_cov_model(self) -> "EngineSettings":
        from .risk.covariance import get_available_cov_models

        if self.cov_model not in get_available_cov_models():
            raise ValueError(
                f"cov_model must be one of {', '.join(get_available_cov_models())}"
            )
        return self


def _read_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError("Invalid config:\n  <root>: settings file must evaluate to a mapping")
    return {str(key).replace("-", "_"): value for key, value in data.items()}


def load_settings(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> EngineSettings:
    """Load settings from ``path`` (or ``$PORTFOLIO_ENGINE_CONFIG``) plus overrides."""

    raw: Dict[str, Any] = {}
    if path is None:
        env_path = os.getenv(CONFIG_ENV_VAR)
        path = env_path or None
    if path is not None:
        source = Path(path)
        if not source.exists():
            raise ConfigError(f"Invalid config:\n  <root>: file not found: {source}")
        raw.update(_read_mapping(source))
    if overrides:
        raw.update({str(key).replace("-", "_"): value for key, value in overrides.items()})
    try:
        return EngineSettings.model_validate(raw)
    except ValidationError as exc:
        lines = []
        for err in exc.errors():
            loc = ".".join(map(str, err.get("loc", []))) or "<root>"
            lines.append(f"{loc}: {err.get('msg')}")
        raise ConfigError("Invalid config:\n  " + "\n  ".join(lines)) from exc


__all__ = ["CONFIG_ENV_VAR", "EngineSettings", "TRADING_DAYS", "load_settings"]
