"""Risk analytics."""

from .contribution import ContributionData, PortfolioStats, portfolio_stats, risk_return_contribution
from .correlation import CorrelationData, correlation_matrix
from .covariance import Moments, estimate_moments, get_available_cov_models, register_cov_model
from .var import VaRResult, historical_var

__all__ = [
    "ContributionData",
    "CorrelationData",
    "Moments",
    "PortfolioStats",
    "VaRResult",
    "correlation_matrix",
    "estimate_moments",
    "get_available_cov_models",
    "historical_var",
    "portfolio_stats",
    "register_cov_model",
    "risk_return_contribution",
]
