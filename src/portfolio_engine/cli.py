"""Command line entry point: ``portfolio-engine <command> [options]``."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, TextIO

from . import metrics
from .black_litterman import View
from .config import load_settings
from .constraints import ConstraintSet
from .data.loader import CsvPriceSource, load_assets, load_weights, weights_from_mapping
from .data.sources import StaticMarketEnvironment
from .engine import (
    AnalysisRequest,
    BacktestRequest,
    ContributionRequest,
    CorrelationRequest,
    EvaluateRequest,
    FactorRequest,
    OptimizeRequest,
    PortfolioEngine,
    ScenarioRequest,
    VaRRequest,
)
from .errors import ConfigError, PortfolioEngineError
from .portfolio.rebalance import rebalance_plan
from .scenario.catalog import load_scenarios

logger = logging.getLogger(__name__)


class _JsonlWriter:
    """Write JSON objects line-by-line to a file handle."""

    def __init__(self, handle: TextIO) -> None:
        self._handle = handle

    def write(self, payload: Mapping[str, Any]) -> None:
        json.dump(payload, self._handle, sort_keys=True, default=str)
        self._handle.write("\n")
        self._handle.flush()

    def close(self) -> None:
        try:
            self._handle.flush()
        finally:
            self._handle.close()


def _parse_weights(text: str) -> Dict[str, float]:
    """``AAPL=40,MSFT=60`` (percent) or ``AAPL=0.4,MSFT=0.6`` (fractions)."""

    raw: Dict[str, float] = {}
    for token in text.split(","):
        token = token.strip()
        if not token:
            continue
        if "=" not in token:
            raise ValueError(f"Weight '{token}' must look like TICKER=VALUE")
        ticker, value = token.split("=", 1)
        raw[ticker.strip()] = float(value)
    if not raw:
        raise ValueError("No weights supplied")
    return weights_from_mapping(raw)


def _parse_view(text: str) -> View:
    """``AAPL>MSFT:0.02:0.6`` reads "AAPL outperforms MSFT by 2% with 60% confidence"."""

    try:
        pair, diff, confidence = text.split(":")
    except ValueError:
        raise argparse.ArgumentTypeError(f"View '{text}' must look like A>B:DIFF:CONFIDENCE") from None
    if ">" in pair:
        asset, other = pair.split(">", 1)
        direction = "outperform"
    elif "<" in pair:
        asset, other = pair.split("<", 1)
        direction = "underperform"
    else:
        raise argparse.ArgumentTypeError(f"View '{text}' needs '>' or '<' between the tickers")
    return View.from_mapping(
        {
            "asset": asset,
            "relative_to": other,
            "direction": direction,
            "expected_return_diff": diff,
            "confidence": confidence,
        }
    )


def _split_tickers(text: str) -> List[str]:
    return [t.strip() for t in text.split(",") if t.strip()]


def build_parser() -> argparse.ArgumentParser:
    """Construct the argument parser for the portfolio engine CLI."""

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=str, default=None, help="YAML/JSON engine settings file")
    common.add_argument("--prices", type=str, default=None, help="CSV of daily closing prices (date + one column per ticker)")
    common.add_argument("--assets", type=str, default=None, help="CSV of asset metadata (ticker,name,country,sector,asset_class)")
    common.add_argument("--risk-free", type=float, default=None, help="Annual risk-free rate override")
    common.add_argument("--out", type=str, default=None, help="Write the JSON result here instead of stdout")
    common.add_argument("--log-level", type=str, default="WARNING", help="Root logging level")
    common.add_argument("--log-json", type=str, default=None, help="Append a JSON-lines run record to this file")
    common.add_argument("--metrics-out", type=str, default=None, help="Write Prometheus exposition text here")

    weights_args = argparse.ArgumentParser(add_help=False)
    weights_args.add_argument("--weights", type=str, default=None, help="Inline weights, e.g. AAPL=40,MSFT=60")
    weights_args.add_argument("--weights-file", type=str, default=None, help="CSV of ticker,weight rows")

    parser = argparse.ArgumentParser(prog="portfolio-engine")
    sub = parser.add_subparsers(dest="command", required=True)

    opt = sub.add_parser("optimize", parents=[common], help="Monte-Carlo mean-variance optimization")
    opt.add_argument("--tickers", type=str, default=None, help="Comma-separated tickers (default: every price column)")
    opt.add_argument("--runner", choices=["quick", "comprehensive"], default="quick")
    opt.add_argument("--iterations", type=int, default=None)
    opt.add_argument("--seed", type=int, default=None)
    opt.add_argument(
        "--objective",
        choices=["sharpe_ratio", "min_volatility", "max_return", "risk_parity"],
        default="sharpe_ratio",
    )
    opt.add_argument("--max-asset-weight", type=float, default=None)
    opt.add_argument("--max-sector-weight", type=float, default=None)
    opt.add_argument("--max-runtime", type=float, default=None, help="Wall-clock budget in seconds")
    opt.add_argument("--view", type=_parse_view, action="append", default=[], help="Black-Litterman view A>B:DIFF:CONF")
    opt.add_argument("--market-caps", type=str, default=None, help="Market caps for the implied prior, e.g. AAPL=3.4e12,...")

    corr = sub.add_parser("correlation", parents=[common], help="Pairwise return correlations")
    corr.add_argument("--tickers", type=str, default=None)

    for name, help_text in (
        ("var", "Historical VaR / CVaR"),
        ("contribution", "Risk and return contribution by asset"),
        ("evaluate", "Statistics and health check for a custom allocation"),
    ):
        cmd = sub.add_parser(name, parents=[common, weights_args], help=help_text)
        if name == "var":
            cmd.add_argument("--portfolio-value", type=float, default=None)
            cmd.add_argument("--confidence", type=float, default=None)

    fac = sub.add_parser("factors", parents=[common, weights_args], help="Three-factor exposures")
    for role, default in (("market", "SPY"), ("small", "IWM"), ("large", "SPY"), ("value", "IWD"), ("growth", "IWF")):
        fac.add_argument(f"--{role}-proxy", type=str, default=default)

    scen = sub.add_parser("scenario", parents=[common, weights_args], help="Sector stress scenarios")
    scen.add_argument("--scenario", dest="scenario_ids", action="append", default=[], help="Scenario id (repeatable)")
    scen.add_argument("--scenario-file", type=str, default=None, help="YAML scenario catalogue")

    bt = sub.add_parser("backtest", parents=[common, weights_args], help="Buy-and-hold backtest against a benchmark")
    bt.add_argument("--benchmark", type=str, default="SPY")
    bt.add_argument("--years", type=int, choices=[1, 3, 5], default=1)
    bt.add_argument("--initial-value", type=float, default=None)
    bt.add_argument("--rebalance-every", type=int, default=None, help="Reset to target weights every N observations")

    reb = sub.add_parser("rebalance", parents=[common], help="Trades from current to target weights")
    reb.add_argument("--current", type=str, required=True, help="Current weights, e.g. AAPL=50,MSFT=50")
    reb.add_argument("--target", type=str, required=True, help="Target weights")
    reb.add_argument("--portfolio-value", type=float, default=None)

    lst = sub.add_parser("scenarios", parents=[common], help="List the scenario catalogue")
    lst.add_argument("--scenario-file", type=str, default=None)

    return parser


def _configure_logging(level: str) -> None:
    numeric = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric, int):
        raise SystemExit(f"Unknown log level: {level}")
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _allocation(parsed: argparse.Namespace) -> Dict[str, float]:
    if parsed.weights:
        return _parse_weights(parsed.weights)
    if parsed.weights_file:
        return load_weights(Path(parsed.weights_file))
    raise SystemExit("--weights or --weights-file must be provided")


def _build_request(parsed: argparse.Namespace, source: CsvPriceSource) -> AnalysisRequest:
    command = parsed.command
    if command in {"optimize", "correlation"}:
        tickers = tuple(_split_tickers(parsed.tickers)) if parsed.tickers else tuple(source.tickers)
        if command == "correlation":
            return CorrelationRequest(tickers=tickers)
        constraints = None
        if parsed.max_asset_weight is not None or parsed.max_sector_weight is not None:
            constraints = ConstraintSet(parsed.max_asset_weight, parsed.max_sector_weight)
        caps = None
        if parsed.market_caps:
            caps = {k: float(v) for k, v in (t.split("=", 1) for t in _split_tickers(parsed.market_caps))}
        return OptimizeRequest(
            tickers=tickers,
            constraints=constraints,
            runner=parsed.runner,
            iterations=parsed.iterations,
            seed=parsed.seed,
            objective=parsed.objective,
            views=tuple(parsed.view),
            market_caps=caps,
            max_runtime=parsed.max_runtime,
        )
    allocation = _allocation(parsed)
    if command == "var":
        return VaRRequest(allocation, portfolio_value=parsed.portfolio_value, confidence=parsed.confidence)
    if command == "contribution":
        return ContributionRequest(allocation)
    if command == "evaluate":
        return EvaluateRequest(allocation)
    if command == "factors":
        proxies = {role: getattr(parsed, f"{role}_proxy") for role in ("market", "small", "large", "value", "growth")}
        return FactorRequest(allocation, proxies=proxies)
    if command == "scenario":
        return ScenarioRequest(allocation, scenario_ids=tuple(parsed.scenario_ids))
    return BacktestRequest(
        allocation,
        benchmark=parsed.benchmark,
        years=parsed.years,
        initial_value=parsed.initial_value,
        rebalance_every=parsed.rebalance_every,
    )


def _emit(payload: Any, out: Optional[str]) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True, default=str)
    if out:
        Path(out).write_text(text + "\n", encoding="utf-8")
    else:
        sys.stdout.write(text + "\n")


def _run(parsed: argparse.Namespace) -> Dict[str, Any]:
    try:
        settings = load_settings(parsed.config)
    except ConfigError as exc:
        raise SystemExit(str(exc)) from None

    if parsed.command == "scenarios":
        catalogue = load_scenarios(parsed.scenario_file)
        payload = [
            {"id": s.id, "name": s.name, "description": s.description, "impact": dict(s.impact)}
            for s in catalogue.values()
        ]
        _emit(payload, parsed.out)
        return {"status": "ok", "count": len(payload)}

    if parsed.command == "rebalance":
        value = parsed.portfolio_value if parsed.portfolio_value is not None else settings.portfolio_value
        plan = rebalance_plan(
            _parse_weights(parsed.current),
            _parse_weights(parsed.target),
            portfolio_value=value,
            threshold=settings.rebalance_threshold,
            currency=settings.settlement_currency,
        )
        _emit(plan.to_dict(), parsed.out)
        return {"status": "ok", "trades": len(plan.trades)}

    if not parsed.prices:
        raise SystemExit("--prices must be provided")
    source = CsvPriceSource(Path(parsed.prices))
    assets = load_assets(Path(parsed.assets)) if parsed.assets else {}
    market = StaticMarketEnvironment()
    if parsed.risk_free is not None:
        market = StaticMarketEnvironment(risk_free_rate=parsed.risk_free)
    scenarios = None
    if parsed.command == "scenario" and parsed.scenario_file:
        scenarios = load_scenarios(parsed.scenario_file)
    engine = PortfolioEngine(source, market=market, settings=settings, assets=assets, scenarios=scenarios)
    response = engine.run(_build_request(parsed, source))
    logger.info("%s %s finished with %d data issue(s)", parsed.command, response.request_id, len(response.issues))
    _emit(response.to_dict(), parsed.out)
    return {
        "status": "ok",
        "request_id": response.request_id,
        "issues": [issue.to_dict() for issue in response.issues],
    }


def main(args: Optional[Iterable[str]] = None) -> None:
    argv: Sequence[str] = list(args) if args is not None else sys.argv[1:]
    parser = build_parser()
    parsed = parser.parse_args(args=argv)
    _configure_logging(parsed.log_level)

    writer: Optional[_JsonlWriter] = None
    if parsed.log_json:
        writer = _JsonlWriter(Path(parsed.log_json).open("a", encoding="utf-8"))
    start = perf_counter()
    record: Dict[str, Any] = {"command": parsed.command, "status": "error"}
    try:
        record.update(_run(parsed))
    except PortfolioEngineError as exc:
        record.update({"status": "error", "error": type(exc).__name__, "message": str(exc)})
        raise SystemExit(f"{type(exc).__name__}: {exc}") from None
    except (KeyError, ValueError) as exc:
        record.update({"status": "error", "error": type(exc).__name__, "message": str(exc)})
        raise SystemExit(f"Invalid input: {exc}") from None
    finally:
        record["elapsed"] = perf_counter() - start
        if writer is not None:
            writer.write(record)
            writer.close()
        if parsed.metrics_out:
            Path(parsed.metrics_out).write_bytes(metrics.render_latest())


if __name__ == "__main__":  # pragma: no cover
    main()
