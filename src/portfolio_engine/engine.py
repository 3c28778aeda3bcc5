"""Request/response entry point tying data collection to the analytics."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from . import metrics
from .assets import Asset, validate_allocation, weight_vector
from .attribution.factors import FactorExposures, FactorSeries, analyze_factors, factor_series_from_proxies
from .backtest.backtest import BacktestResult, run_backtest
from .black_litterman import View, posterior_returns
from .config import EngineSettings
from .constraints import ConstraintSet
from .data.series import PriceSeries, ReturnPanel, build_return_panel
from .data.sources import (
    CachePort,
    CachedPriceSource,
    MarketEnvironment,
    PriceHistorySource,
    StaticMarketEnvironment,
    fetch_histories,
)
from .errors import InsufficientAssetsError, UpstreamDataError
from .optimizer import MonteCarloOptimizer, OptimizationResult, OptimizerConfig
from .portfolio.health import HealthReport, health_check
from .risk.contribution import ContributionData, PortfolioStats, portfolio_stats, risk_return_contribution
from .risk.correlation import CorrelationData, correlation_matrix
from .risk.covariance import Moments, estimate_moments
from .risk.var import VaRResult, historical_var, portfolio_simple_returns
from .runid import compute_request_id
from .scenario.catalog import load_scenarios
from .scenario.runner import Scenario, ScenarioResult, ScenarioRunner

logger = logging.getLogger(__name__)

DEFAULT_FACTOR_PROXIES: Mapping[str, str] = {
    "market": "SPY",
    "small": "IWM",
    "large": "SPY",
    "value": "IWD",
    "growth": "IWF",
}


@dataclass(frozen=True)
class DataIssue:
    """A ticker left out of an analysis and why."""

    ticker: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"ticker": self.ticker, "reason": self.reason}


@dataclass(frozen=True)
class OptimizeRequest:
    kind: ClassVar[str] = "optimize"

    tickers: Tuple[str, ...]
    constraints: Optional[ConstraintSet] = None
    runner: str = "quick"
    iterations: Optional[int] = None
    seed: Optional[int] = None
    objective: str = "sharpe_ratio"
    views: Tuple[View, ...] = ()
    market_caps: Optional[Mapping[str, float]] = None
    max_runtime: Optional[float] = None


@dataclass(frozen=True)
class VaRRequest:
    kind: ClassVar[str] = "var"

    allocation: Mapping[str, float]
    portfolio_value: Optional[float] = None
    confidence: Optional[float] = None


@dataclass(frozen=True)
class CorrelationRequest:
    kind: ClassVar[str] = "correlation"

    tickers: Tuple[str, ...]


@dataclass(frozen=True)
class ContributionRequest:
    kind: ClassVar[str] = "contribution"

    allocation: Mapping[str, float]


@dataclass(frozen=True)
class FactorRequest:
    kind: ClassVar[str] = "factors"

    allocation: Mapping[str, float]
    factors: Optional[FactorSeries] = None
    proxies: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_FACTOR_PROXIES))


@dataclass(frozen=True)
class ScenarioRequest:
    kind: ClassVar[str] = "scenario"

    allocation: Mapping[str, float]
    scenario_ids: Tuple[str, ...] = ()
    scenarios: Tuple[Scenario, ...] = ()


@dataclass(frozen=True)
class BacktestRequest:
    kind: ClassVar[str] = "backtest"

    allocation: Mapping[str, float]
    benchmark: str = "SPY"
    years: int = 1
    initial_value: Optional[float] = None
    rebalance_every: Optional[int] = None


@dataclass(frozen=True)
class EvaluateRequest:
    kind: ClassVar[str] = "evaluate"

    allocation: Mapping[str, float]


AnalysisRequest = Union[
    OptimizeRequest,
    VaRRequest,
    CorrelationRequest,
    ContributionRequest,
    FactorRequest,
    ScenarioRequest,
    BacktestRequest,
    EvaluateRequest,
]


@dataclass(frozen=True)
class EvaluationResult:
    stats: PortfolioStats
    contributions: Tuple[ContributionData, ...]
    health: Optional[HealthReport] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stats": self.stats.to_dict(),
            "contributions": [c.to_dict() for c in self.contributions],
            "health": self.health.to_dict() if self.health is not None else None,
        }


AnalysisResult = Union[
    OptimizationResult,
    VaRResult,
    CorrelationData,
    Tuple[ContributionData, ...],
    FactorExposures,
    Tuple[ScenarioResult, ...],
    BacktestResult,
    EvaluationResult,
]


def _result_to_dict(result: Any) -> Any:
    if isinstance(result, tuple):
        return [item.to_dict() for item in result]
    return result.to_dict()


@dataclass(frozen=True)
class AnalysisResponse:
    kind: str
    request_id: str
    result: AnalysisResult
    issues: Tuple[DataIssue, ...] = ()
    settlement_currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "request_id": self.request_id,
            "result": _result_to_dict(self.result),
            "issues": [issue.to_dict() for issue in self.issues],
            "settlement_currency": self.settlement_currency,
        }


class PortfolioEngine:
    """Fetch histories once per request, then run the requested analysis."""

    def __init__(
        self,
        source: PriceHistorySource,
        market: Optional[MarketEnvironment] = None,
        settings: Optional[EngineSettings] = None,
        assets: Optional[Mapping[str, Asset]] = None,
        scenarios: Optional[Mapping[str, Scenario]] = None,
        cache: Optional[CachePort] = None,
    ) -> None:
        self.market = market if market is not None else StaticMarketEnvironment()
        self.settings = settings if settings is not None else EngineSettings()
        if cache is not None:
            source = CachedPriceSource(source, cache, ttl_seconds=self.settings.cache_ttl_seconds)
        self.source = source
        self.assets: Dict[str, Asset] = dict(assets or {})
        self._scenarios = dict(scenarios) if scenarios is not None else None
        self._handlers: Dict[type, Callable[..., Tuple[Any, List[DataIssue]]]] = {
            OptimizeRequest: self._optimize,
            VaRRequest: self._var,
            CorrelationRequest: self._correlation,
            ContributionRequest: self._contribution,
            FactorRequest: self._factors,
            ScenarioRequest: self._scenario,
            BacktestRequest: self._backtest,
            EvaluateRequest: self._evaluate,
        }

    @property
    def scenarios(self) -> Dict[str, Scenario]:
        if self._scenarios is None:
            self._scenarios = load_scenarios()
        return self._scenarios

    def run(
        self,
        request: AnalysisRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalysisResponse:
        handler = self._handlers.get(type(request))
        if handler is None:
            raise TypeError(f"Unsupported request type: {type(request).__name__}")
        kind = request.kind
        request_id = compute_request_id(kind, dataclasses.asdict(request))
        metrics.mark_analysis_started(kind)
        start = perf_counter()
        try:
            if isinstance(request, OptimizeRequest):
                result, issues = handler(request, cancel_event)
            else:
                result, issues = handler(request)
        except Exception as exc:
            metrics.mark_analysis_failed(kind, type(exc).__name__)
            logger.info("Request %s (%s) failed: %s", request_id, kind, exc)
            raise
        finally:
            metrics.observe_duration(kind, perf_counter() - start)
        metrics.mark_analysis_succeeded(kind)
        return AnalysisResponse(
            kind=kind,
            request_id=request_id,
            result=result,
            issues=tuple(issues),
            settlement_currency=self.settings.settlement_currency,
        )

    # ---- data collection ----
    def _fetch(self, tickers: Sequence[str], required: Sequence[str]) -> Tuple[List[PriceSeries], List[DataIssue]]:
        report = fetch_histories(self.source, tickers, self.settings.fetch_workers)
        metrics.mark_fetch_failures(len(report.failures))
        for ticker in required:
            if ticker in report.failures:
                raise UpstreamDataError(ticker, report.failures[ticker])
        issues = [DataIssue(t, reason) for t, reason in sorted(report.failures.items())]
        for issue in issues:
            logger.warning("Dropping %s: %s", issue.ticker, issue.reason)
        for ticker, reason in sorted(report.fallbacks.items()):
            logger.warning("Degraded data for %s: %s", ticker, reason)
            issues.append(DataIssue(ticker, reason))
        return report.ordered(tickers), issues

    def _universe_panel(self, tickers: Sequence[str]) -> Tuple[ReturnPanel, List[DataIssue]]:
        """Panel for analyses that can proceed without some tickers."""

        series, issues = self._fetch(list(tickers), required=())
        if len(series) < 2:
            raise InsufficientAssetsError(len(series))
        panel = build_return_panel(
            series,
            min_observations=self.settings.min_history,
            drop_insufficient=self.settings.short_history_policy == "drop",
        )
        for ticker, reason in panel.excluded.items():
            logger.warning("Dropping %s: %s", ticker, reason)
            issues.append(DataIssue(ticker, reason))
        if len(panel.tickers) < 2:
            raise InsufficientAssetsError(len(panel.tickers))
        return panel, issues

    def _held_panel(
        self, allocation: Mapping[str, float]
    ) -> Tuple[Dict[str, float], ReturnPanel, List[DataIssue]]:
        """Panel over every held ticker; any missing or short history is fatal."""

        weights = validate_allocation(allocation)
        held = [t for t, w in weights.items() if w > 0.0]
        series, issues = self._fetch(held, required=held)
        panel = build_return_panel(series, min_observations=self.settings.min_history)
        return {t: weights[t] for t in held}, panel, issues

    def _moments(self, panel: ReturnPanel) -> Moments:
        return estimate_moments(
            panel,
            trading_days=self.settings.trading_days,
            cov_model=self.settings.cov_model,
            span=self.settings.ewma_span,
        )

    def _fx(self) -> float:
        return self.market.get_fx_rate(self.settings.base_currency, self.settings.settlement_currency)

    def _sectors(self) -> Dict[str, str]:
        return {t: a.sector for t, a in self.assets.items()}

    # ---- handlers ----
    def _optimize(
        self,
        request: OptimizeRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[OptimizationResult, List[DataIssue]]:
        panel, issues = self._universe_panel(request.tickers)
        moments = self._moments(panel)
        expected = moments.mean
        prior = "historical"
        if request.views:
            expected = posterior_returns(
                moments.tickers,
                moments.mean,
                moments.cov,
                request.views,
                market_caps=request.market_caps,
                risk_aversion=self.settings.risk_aversion,
                tau=self.settings.tau,
            )
            prior = "black_litterman"
        iterations = request.iterations
        if iterations is None:
            iterations = (
                self.settings.comprehensive_iterations
                if request.runner == "comprehensive"
                else self.settings.quick_iterations
            )
        config = OptimizerConfig(
            runner=request.runner,
            iterations=iterations,
            seed=request.seed,
            max_points=self.settings.max_simulation_points,
            chunk_size=self.settings.chunk_size,
            workers=self.settings.optimizer_workers,
            objective=request.objective,
            max_runtime=request.max_runtime,
        )
        result = MonteCarloOptimizer(config).optimize(
            moments.tickers,
            expected,
            moments.cov,
            self.market.get_risk_free_rate(),
            constraints=request.constraints,
            sectors=self._sectors(),
            cancel_event=cancel_event,
        )
        return dataclasses.replace(result, prior=prior), issues

    def _var(self, request: VaRRequest) -> Tuple[VaRResult, List[DataIssue]]:
        weights, panel, issues = self._held_panel(request.allocation)
        value = request.portfolio_value if request.portfolio_value is not None else self.settings.portfolio_value
        confidence = request.confidence if request.confidence is not None else self.settings.var_confidence
        result = historical_var(
            panel,
            weights,
            portfolio_value=value * self._fx(),
            confidence=confidence,
            min_observations=self.settings.min_history,
            currency=self.settings.settlement_currency,
        )
        return result, issues

    def _correlation(self, request: CorrelationRequest) -> Tuple[CorrelationData, List[DataIssue]]:
        panel, issues = self._universe_panel(request.tickers)
        result = correlation_matrix(panel)
        unavailable = {issue.ticker: issue.reason for issue in issues if issue.ticker not in panel.tickers}
        unavailable.update(result.unavailable)
        return dataclasses.replace(result, unavailable=unavailable), issues

    def _contribution(self, request: ContributionRequest) -> Tuple[Tuple[ContributionData, ...], List[DataIssue]]:
        weights, panel, issues = self._held_panel(request.allocation)
        return tuple(risk_return_contribution(self._moments(panel), weights)), issues

    def _factors(self, request: FactorRequest) -> Tuple[FactorExposures, List[DataIssue]]:
        weights, panel, issues = self._held_panel(request.allocation)
        port = portfolio_simple_returns(panel, weight_vector(weights, panel.tickers))
        rf = self.market.get_risk_free_rate()
        factors = request.factors
        if factors is None:
            proxies = dict(DEFAULT_FACTOR_PROXIES)
            proxies.update(request.proxies)
            names = list(dict.fromkeys(proxies[key] for key in ("market", "small", "large", "value", "growth")))
            series, proxy_issues = self._fetch(names, required=names)
            issues.extend([issue for issue in proxy_issues if issue not in issues])
            factors = factor_series_from_proxies(
                {s.ticker: s for s in series},
                market=proxies["market"],
                small=proxies["small"],
                large=proxies["large"],
                value=proxies["value"],
                growth=proxies["growth"],
                risk_free_rate=rf,
                min_observations=self.settings.min_history,
                trading_days=self.settings.trading_days,
            )
        result = analyze_factors(
            port,
            factors,
            risk_free_rate=rf,
            min_observations=self.settings.min_history,
            trading_days=self.settings.trading_days,
            dates=panel.dates,
        )
        return result, issues

    def _scenario(self, request: ScenarioRequest) -> Tuple[Tuple[ScenarioResult, ...], List[DataIssue]]:
        weights, panel, issues = self._held_panel(request.allocation)
        moments = self._moments(panel)
        expected = {t: float(mu) for t, mu in zip(moments.tickers, moments.mean)}
        chosen: List[Scenario] = list(request.scenarios)
        if request.scenario_ids:
            catalogue = self.scenarios
            unknown = [sid for sid in request.scenario_ids if sid not in catalogue]
            if unknown:
                raise KeyError(f"Unknown scenario ids: {', '.join(unknown)}")
            chosen.extend(catalogue[sid] for sid in request.scenario_ids)
        if not chosen:
            chosen = list(self.scenarios.values())
        for ticker in sorted(t for t in weights if t not in self.assets):
            issues.append(DataIssue(ticker, "no asset metadata; sector 'Unknown' is not shocked"))
        runner = ScenarioRunner(weights, expected, sectors=self._sectors())
        return tuple(runner.run_all(chosen)), issues

    def _backtest(self, request: BacktestRequest) -> Tuple[BacktestResult, List[DataIssue]]:
        weights = validate_allocation(request.allocation)
        held = [t for t, w in weights.items() if w > 0.0]
        names = list(dict.fromkeys(held + [request.benchmark]))
        series, issues = self._fetch(names, required=names)
        by_ticker = {s.ticker: s for s in series}
        initial = request.initial_value if request.initial_value is not None else self.settings.portfolio_value
        result = run_backtest(
            [by_ticker[t] for t in held],
            {t: weights[t] for t in held},
            by_ticker[request.benchmark],
            years=request.years,
            initial_value=initial,
            fx_rate=self._fx(),
            rebalance_every=request.rebalance_every,
            currency=self.settings.settlement_currency,
        )
        return result, issues

    def _evaluate(self, request: EvaluateRequest) -> Tuple[EvaluationResult, List[DataIssue]]:
        weights, panel, issues = self._held_panel(request.allocation)
        moments = self._moments(panel)
        w = weight_vector(weights, moments.tickers)
        stats = portfolio_stats(moments.tickers, w, moments.mean, moments.cov, self.market.get_risk_free_rate())
        contributions = tuple(risk_return_contribution(moments, weights))
        health: Optional[HealthReport] = None
        if all(t in self.assets for t in weights):
            health = health_check(weights, self.assets, stats.volatility)
        else:
            for ticker in sorted(t for t in weights if t not in self.assets):
                issues.append(DataIssue(ticker, "no asset metadata; health check skipped"))
        return EvaluationResult(stats=stats, contributions=contributions, health=health), issues


__all__ = [
    "AnalysisRequest",
    "AnalysisResponse",
    "BacktestRequest",
    "ContributionRequest",
    "CorrelationRequest",
    "DataIssue",
    "EvaluateRequest",
    "EvaluationResult",
    "FactorRequest",
    "OptimizeRequest",
    "PortfolioEngine",
    "ScenarioRequest",
    "VaRRequest",
]
