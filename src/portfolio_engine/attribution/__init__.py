"""Factor attribution."""

from .factors import FactorExposures, FactorSeries, analyze_factors, factor_series_from_proxies

__all__ = ["FactorExposures", "FactorSeries", "analyze_factors", "factor_series_from_proxies"]
