"""Error taxonomy shared by every analytic component."""

from __future__ import annotations

from typing import Mapping, Optional, Sequence


class PortfolioEngineError(RuntimeError):
    """Base class for errors raised by the portfolio engine."""


class InsufficientHistoryError(PortfolioEngineError):
    """Raised when an asset's usable history is shorter than the minimum window."""

    def __init__(
        self,
        ticker: Optional[str],
        available: int,
        required: int,
        message: Optional[str] = None,
    ) -> None:
        self.ticker = ticker
        self.available = int(available)
        self.required = int(required)
        if message is None:
            subject = f"'{ticker}'" if ticker else "aligned history"
            message = (
                f"Insufficient history for {subject}: "
                f"{self.available} observations available, {self.required} required"
            )
        super().__init__(message)


class InsufficientAssetsError(PortfolioEngineError):
    """Raised when fewer than two assets survive filtering."""

    def __init__(self, available: int, required: int = 2, message: Optional[str] = None) -> None:
        self.available = int(available)
        self.required = int(required)
        if message is None:
            message = (
                f"Need at least {self.required} assets with sufficient history, "
                f"got {self.available}"
            )
        super().__init__(message)


class InfeasibleConstraintsError(PortfolioEngineError):
    """Raised when no sampled allocation satisfies the constraint set."""


class InvalidViewError(PortfolioEngineError, ValueError):
    """Raised for malformed Black-Litterman input."""


class InvalidAllocationError(PortfolioEngineError, ValueError):
    """Raised when an allocation breaks the long-only, fully-invested contract."""


class OptimizationCancelledError(PortfolioEngineError):
    """Raised when an optimization is interrupted between sampling chunks."""


class UpstreamDataError(PortfolioEngineError):
    """Raised when the price-history collaborator fails or returns empty data."""

    def __init__(
        self,
        ticker: Optional[str],
        message: str,
        attempts: Optional[Sequence[Mapping[str, str]]] = None,
    ) -> None:
        self.ticker = ticker
        self.attempts = [dict(item) for item in (attempts or [])]
        super().__init__(message)


class ConfigError(PortfolioEngineError, ValueError):
    """Raised when engine settings fail validation."""


__all__ = [
    "ConfigError",
    "InfeasibleConstraintsError",
    "InsufficientAssetsError",
    "InsufficientHistoryError",
    "InvalidAllocationError",
    "InvalidViewError",
    "OptimizationCancelledError",
    "PortfolioEngineError",
    "UpstreamDataError",
]
