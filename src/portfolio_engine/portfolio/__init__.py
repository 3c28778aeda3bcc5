"""Allocation maintenance tools."""

from .health import HealthReport, health_check, risk_score
from .rebalance import RebalancePlan, Trade, rebalance_plan

__all__ = ["HealthReport", "RebalancePlan", "Trade", "health_check", "rebalance_plan", "risk_score"]
