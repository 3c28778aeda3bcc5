import threading

import numpy as np
import pytest

from portfolio_engine.constraints import ConstraintSet
from portfolio_engine.errors import InfeasibleConstraintsError, InsufficientAssetsError, OptimizationCancelledError
from portfolio_engine.optimizer import MonteCarloOptimizer, OptimizerConfig, downsample


def _moments(n: int, seed: int = 0):
    rng = np.random.default_rng(seed)
    mu = rng.uniform(0.02, 0.2, size=n)
    a = rng.normal(scale=0.1, size=(n, n))
    cov = a @ a.T + 0.01 * np.eye(n)
    return [f"T{i}" for i in range(n)], mu, cov


def test_config_defaults_and_validation() -> None:
    cfg = OptimizerConfig()
    assert cfg.total_iterations == 2_500
    assert OptimizerConfig(runner="comprehensive").total_iterations == 5_000
    assert OptimizerConfig(iterations=123).total_iterations == 123
    with pytest.raises(ValueError):
        OptimizerConfig(runner="slow")
    with pytest.raises(ValueError):
        OptimizerConfig(objective="moonshot")
    with pytest.raises(ValueError):
        OptimizerConfig(chunk_size=0)
    assert OptimizerConfig.from_overrides({"seed": 5}).seed == 5


def test_downsample_stride() -> None:
    assert downsample(list(range(10)), 20) == list(range(10))
    assert downsample(list(range(1001)), 500) == list(range(0, 1001, 3))
    assert downsample([], 5) == []


def test_best_is_feasible_and_maximal() -> None:
    tickers, mu, cov = _moments(4)
    opt = MonteCarloOptimizer({"iterations": 2_000, "seed": 7, "max_points": 10_000, "chunk_size": 300})
    result = opt.optimize(tickers, mu, cov, risk_free_rate=0.03)
    weights = np.array([result.weights[t] for t in tickers])
    assert weights.sum() == pytest.approx(1.0)
    assert np.all(weights >= 0)
    assert result.accepted == 2_000
    assert result.rejected == 0
    assert result.iterations == 2_000
    assert len(result.simulations) == 2_000
    best = result.best.sharpe_ratio
    assert all(point.sharpe_ratio <= best + 1e-12 for point in result.simulations)
    assert result.seed == 7
    assert result.prior == "historical"


def test_same_seed_same_result_across_workers() -> None:
    tickers, mu, cov = _moments(5, seed=3)
    base = {"iterations": 3_000, "seed": 11, "chunk_size": 250}
    single = MonteCarloOptimizer({**base, "workers": 1}).optimize(tickers, mu, cov, 0.0)
    pooled = MonteCarloOptimizer({**base, "workers": 4}).optimize(tickers, mu, cov, 0.0)
    assert single.weights == pooled.weights
    assert single.simulations == pooled.simulations
    assert single.accepted == pooled.accepted


def test_asset_cap_respected() -> None:
    tickers, mu, cov = _moments(10)
    cs = ConstraintSet(max_asset_weight=0.3)
    result = MonteCarloOptimizer({"iterations": 2_500, "seed": 1}).optimize(
        tickers, mu, cov, 0.0, constraints=cs
    )
    assert max(result.weights.values()) <= 0.3 + 1e-6
    assert result.constraints == "max_asset_weight=0.3"
    assert len(result.simulations) <= 500


def test_sector_cap_respected() -> None:
    tickers, mu, cov = _moments(4)
    sectors = {"T0": "Tech", "T1": "Tech", "T2": "Energy", "T3": "Health"}
    result = MonteCarloOptimizer({"iterations": 1_500, "seed": 2}).optimize(
        tickers, mu, cov, 0.0, constraints=ConstraintSet(max_sector_weight=0.5), sectors=sectors
    )
    assert result.weights["T0"] + result.weights["T1"] <= 0.5 + 1e-9
    assert result.rejected > 0


def test_unreachable_constraints_fail_fast() -> None:
    tickers, mu, cov = _moments(3)
    with pytest.raises(InfeasibleConstraintsError, match="Could not find a valid portfolio"):
        MonteCarloOptimizer({"iterations": 100, "seed": 0}).optimize(
            tickers, mu, cov, 0.0, constraints=ConstraintSet(max_asset_weight=0.2)
        )


def test_tight_constraints_with_no_accepted_sample() -> None:
    tickers, mu, cov = _moments(10)
    with pytest.raises(InfeasibleConstraintsError, match="0 of 50 samples accepted"):
        MonteCarloOptimizer({"iterations": 50, "seed": 0}).optimize(
            tickers, mu, cov, 0.0, constraints=ConstraintSet(max_asset_weight=0.1000001)
        )


def test_single_asset_rejected() -> None:
    with pytest.raises(InsufficientAssetsError):
        MonteCarloOptimizer().optimize(["A"], np.array([0.1]), np.array([[0.04]]), 0.0)


def test_shape_mismatch_rejected() -> None:
    tickers, mu, cov = _moments(3)
    with pytest.raises(ValueError):
        MonteCarloOptimizer().optimize(tickers, mu[:2], cov, 0.0)


def test_cancel_event_stops_sampling() -> None:
    tickers, mu, cov = _moments(3)
    event = threading.Event()
    event.set()
    with pytest.raises(OptimizationCancelledError):
        MonteCarloOptimizer({"iterations": 1_000, "seed": 0}).optimize(tickers, mu, cov, 0.0, cancel_event=event)


@pytest.mark.parametrize("objective", ["min_volatility", "max_return", "risk_parity"])
def test_alternative_objectives(objective) -> None:
    tickers, mu, cov = _moments(4)
    result = MonteCarloOptimizer(
        {"iterations": 1_000, "seed": 4, "objective": objective, "max_points": 5_000}
    ).optimize(tickers, mu, cov, 0.0)
    assert result.objective == objective
    vols = [p.volatility for p in result.simulations]
    rets = [p.expected_return for p in result.simulations]
    if objective == "min_volatility":
        assert result.best.volatility == pytest.approx(min(vols))
    if objective == "max_return":
        assert result.best.expected_return == pytest.approx(max(rets))
    assert sum(result.weights.values()) == pytest.approx(1.0)


def test_zero_covariance_does_not_divide_by_zero() -> None:
    result = MonteCarloOptimizer({"iterations": 200, "seed": 0}).optimize(
        ["A", "B"], np.array([0.252, 0.126]), np.zeros((2, 2)), 0.04
    )
    assert result.best.volatility == 0.0
    assert result.best.sharpe_ratio == 0.0
