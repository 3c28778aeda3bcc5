"""Portfolio optimization and risk analytics engine public API."""
from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:  # runtime package version
    __version__ = version("portfolio-engine")
except PackageNotFoundError:  # editable/dev env
    __version__ = "0.0.0+local"

from .assets import Asset, validate_allocation
from .black_litterman import View
from .config import EngineSettings, load_settings
from .constraints import ConstraintSet
from .engine import (
    AnalysisResponse,
    BacktestRequest,
    ContributionRequest,
    CorrelationRequest,
    DataIssue,
    EvaluateRequest,
    FactorRequest,
    OptimizeRequest,
    PortfolioEngine,
    ScenarioRequest,
    VaRRequest,
)
from .optimizer import MonteCarloOptimizer, OptimizationObjective, OptimizationResult, OptimizerConfig
from .risk.covariance import register_cov_model

__all__ = [
    "AnalysisResponse",
    "Asset",
    "BacktestRequest",
    "ConstraintSet",
    "ContributionRequest",
    "CorrelationRequest",
    "DataIssue",
    "EngineSettings",
    "EvaluateRequest",
    "FactorRequest",
    "MonteCarloOptimizer",
    "OptimizationObjective",
    "OptimizationResult",
    "OptimizeRequest",
    "OptimizerConfig",
    "PortfolioEngine",
    "ScenarioRequest",
    "VaRRequest",
    "View",
    "__version__",
    "load_settings",
    "register_cov_model",
    "validate_allocation",
]
