"""Trade list that moves a portfolio from its current to its target weights."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping

from ..assets import validate_allocation


@dataclass(frozen=True)
class Trade:
    ticker: str
    action: Literal["BUY", "SELL"]
    weight_change: float
    amount: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "action": self.action,
            "weight_change": self.weight_change,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class RebalancePlan:
    trades: List[Trade] = field(default_factory=list)
    portfolio_value: float = 10_000.0
    threshold: float = 0.005
    currency: str = "USD"

    @property
    def turnover(self) -> float:
        return 0.5 * sum(abs(t.weight_change) for t in self.trades)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trades": [t.to_dict() for t in self.trades],
            "portfolio_value": self.portfolio_value,
            "threshold": self.threshold,
            "currency": self.currency,
            "turnover": self.turnover,
        }


def rebalance_plan(
    current: Mapping[str, float],
    target: Mapping[str, float],
    portfolio_value: float = 10_000.0,
    threshold: float = 0.005,
    currency: str = "USD",
) -> RebalancePlan:
    """BUY/SELL trades for every weight that moves by more than ``threshold``.

    Positions held now but absent from ``target`` are sold down to zero.
    """

    if portfolio_value <= 0:
        raise ValueError("portfolio_value must be positive")
    if threshold < 0:
        raise ValueError("threshold must be non-negative")
    now = validate_allocation(current)
    goal = validate_allocation(target)
    trades: List[Trade] = []
    for ticker in list(goal) + [t for t in now if t not in goal]:
        diff = goal.get(ticker, 0.0) - now.get(ticker, 0.0)
        if abs(diff) <= threshold:
            continue
        trades.append(
            Trade(
                ticker=ticker,
                action="BUY" if diff > 0 else "SELL",
                weight_change=float(diff),
                amount=round(abs(diff) * portfolio_value, 2),
            )
        )
    return RebalancePlan(
        trades=trades,
        portfolio_value=float(portfolio_value),
        threshold=float(threshold),
        currency=currency,
    )


__all__ = ["RebalancePlan", "Trade", "rebalance_plan"]
