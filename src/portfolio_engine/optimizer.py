from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from enum import Enum
import logging
import math
import threading
from time import perf_counter
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .constraints import ConstraintSet, feasible_mask, sector_membership
from .errors import InfeasibleConstraintsError, InsufficientAssetsError, OptimizationCancelledError
from .risk.contribution import PortfolioStats, portfolio_stats
from .utils import safe_ratio, seed_sequence, spawn_generators

logger = logging.getLogger(__name__)

RUNNER_ITERATIONS: Mapping[str, int] = {"quick": 2_500, "comprehensive": 5_000}


class OptimizationObjective(Enum):
    SHARPE_RATIO = "sharpe_ratio"
    MIN_VOLATILITY = "min_volatility"
    MAX_RETURN = "max_return"
    RISK_PARITY = "risk_parity"


@dataclass
class OptimizerConfig:
    """Configuration container for :class:`MonteCarloOptimizer`."""

    runner: str = "quick"
    iterations: Optional[int] = None
    seed: Optional[int] = None
    max_points: int = 500
    chunk_size: int = 500
    workers: Optional[int] = None
    objective: str = OptimizationObjective.SHARPE_RATIO.value
    max_runtime: Optional[float] = None
    volatility_floor: float = 1e-6
    log_every: int = 10

    def __post_init__(self) -> None:
        if self.runner not in RUNNER_ITERATIONS:
            raise ValueError(f"runner must be one of {', '.join(RUNNER_ITERATIONS)}")
        if self.iterations is not None and self.iterations <= 0:
            raise ValueError("iterations must be positive")
        if self.seed is not None and self.seed < 0:
            raise ValueError("seed must be non-negative")
        if self.max_points <= 0:
            raise ValueError("max_points must be positive")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.workers is not None and self.workers <= 0:
            raise ValueError("workers must be positive")
        if self.max_runtime is not None and self.max_runtime <= 0.0:
            raise ValueError("max_runtime must be positive")
        if self.volatility_floor < 0.0:
            raise ValueError("volatility_floor must be non-negative")
        if self.log_every <= 0:
            raise ValueError("log_every must be positive")
        try:
            OptimizationObjective(str(self.objective))
        except ValueError:
            valid = ", ".join(o.value for o in OptimizationObjective)
            raise ValueError(f"objective must be one of {valid}") from None

    @classmethod
    def from_overrides(cls, overrides: Optional[Dict[str, Any]] = None) -> "OptimizerConfig":
        if overrides is None:
            return cls()
        base = asdict(cls())
        base.update(overrides)
        return cls(**base)

    @property
    def total_iterations(self) -> int:
        if self.iterations is not None:
            return int(self.iterations)
        return RUNNER_ITERATIONS[self.runner]


@dataclass(frozen=True)
class SimulationPoint:
    expected_return: float
    volatility: float
    sharpe_ratio: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "expected_return": self.expected_return,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
        }


@dataclass(frozen=True)
class OptimizationResult:
    """Structured result returned by :meth:`MonteCarloOptimizer.optimize`."""

    best: PortfolioStats
    simulations: Tuple[SimulationPoint, ...]
    accepted: int
    rejected: int
    iterations: int
    seed: int
    objective: str
    elapsed: float
    truncated: bool = False
    constraints: str = "unconstrained"
    prior: str = "historical"

    @property
    def weights(self) -> Mapping[str, float]:
        return self.best.weights

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best": self.best.to_dict(),
            "simulations": [point.to_dict() for point in self.simulations],
            "accepted": self.accepted,
            "rejected": self.rejected,
            "iterations": self.iterations,
            "seed": self.seed,
            "objective": self.objective,
            "elapsed": self.elapsed,
            "truncated": self.truncated,
            "constraints": self.constraints,
            "prior": self.prior,
        }


@dataclass
class _ChunkOutcome:
    index: int
    sample_ids: np.ndarray
    returns: np.ndarray
    volatilities: np.ndarray
    sharpes: np.ndarray
    rejected: int
    best_score: float = -math.inf
    best_id: int = -1
    best_weights: Optional[np.ndarray] = None


@dataclass
class _Problem:
    mu: np.ndarray
    cov: np.ndarray
    risk_free: float
    constraints: Optional[ConstraintSet]
    membership: Optional[np.ndarray]
    objective: OptimizationObjective
    vol_floor: float
    chunk_bounds: List[Tuple[int, int]] = field(default_factory=list)


def downsample(points: Sequence[Any], max_points: int) -> List[Any]:
    """Keep every ``stride``-th point, ``stride = max(1, ceil(len / max_points))``."""

    total = len(points)
    if total == 0:
        return []
    stride = max(1, math.ceil(total / max_points))
    return [points[i] for i in range(0, total, stride)]


def _objective_scores(
    objective: OptimizationObjective,
    weights: np.ndarray,
    cov: np.ndarray,
    returns: np.ndarray,
    variances: np.ndarray,
    volatilities: np.ndarray,
    sharpes: np.ndarray,
) -> np.ndarray:
    if objective is OptimizationObjective.SHARPE_RATIO:
        return sharpes
    if objective is OptimizationObjective.MIN_VOLATILITY:
        return -volatilities
    if objective is OptimizationObjective.MAX_RETURN:
        return returns
    n = weights.shape[1]
    marginal = weights @ cov
    shares = np.divide(
        weights * marginal,
        variances[:, None],
        out=np.zeros_like(weights),
        where=variances[:, None] > 1e-18,
    )
    return -np.sum((shares - 1.0 / n) ** 2, axis=1)


def _run_chunk(problem: _Problem, index: int, rng: np.random.Generator) -> _ChunkOutcome:
    start, stop = problem.chunk_bounds[index]
    size = stop - start
    n = problem.mu.shape[0]
    draws = rng.random((size, n))
    weights = draws / draws.sum(axis=1, keepdims=True)
    mask = feasible_mask(weights, problem.constraints, problem.membership)
    ids = np.arange(start, stop)[mask]
    accepted = weights[mask]
    rets = accepted @ problem.mu
    variances = np.einsum("ij,jk,ik->i", accepted, problem.cov, accepted)
    vols = np.sqrt(np.maximum(variances, 0.0))
    sharpes = safe_ratio(rets - problem.risk_free, vols, problem.vol_floor)
    outcome = _ChunkOutcome(
        index=index,
        sample_ids=ids,
        returns=rets,
        volatilities=vols,
        sharpes=sharpes,
        rejected=int(size - ids.size),
    )
    if ids.size:
        scores = _objective_scores(
            problem.objective, accepted, problem.cov, rets, variances, vols, sharpes
        )
        local = int(np.argmax(scores))
        outcome.best_score = float(scores[local])
        outcome.best_id = int(ids[local])
        outcome.best_weights = accepted[local].copy()
    return outcome


class MonteCarloOptimizer:
    """Random simplex search for the allocation that maximises an objective."""

    def __init__(self, config: Optional[Dict[str, Any] | OptimizerConfig] = None):
        if isinstance(config, OptimizerConfig):
            self.cfg = config
        else:
            self.cfg = OptimizerConfig.from_overrides(config)

    def optimize(
        self,
        tickers: Sequence[str],
        mean: np.ndarray,
        cov: np.ndarray,
        risk_free_rate: float,
        constraints: Optional[ConstraintSet] = None,
        sectors: Optional[Mapping[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationResult:
        start_time = perf_counter()
        names = [str(t) for t in tickers]
        n = len(names)
        if n < 2:
            raise InsufficientAssetsError(n)
        mu = np.asarray(mean, dtype=float).reshape(-1)
        sigma = np.asarray(cov, dtype=float)
        self._validate(mu, sigma, n)

        membership = None
        if constraints is not None and constraints.max_sector_weight is not None:
            _, membership = sector_membership(names, sectors)
        self._check_reachable(constraints, n, membership)

        iterations = self.cfg.total_iterations
        chunk = self.cfg.chunk_size
        bounds = [(lo, min(lo + chunk, iterations)) for lo in range(0, iterations, chunk)]
        seq = seed_sequence(self.cfg.seed)
        rngs = spawn_generators(seq, len(bounds))
        problem = _Problem(
            mu=mu,
            cov=sigma,
            risk_free=float(risk_free_rate),
            constraints=constraints,
            membership=membership,
            objective=OptimizationObjective(self.cfg.objective),
            vol_floor=float(self.cfg.volatility_floor),
            chunk_bounds=bounds,
        )

        outcomes, truncated = self._sample(problem, rngs, cancel_event, start_time)

        best: Optional[_ChunkOutcome] = None
        for outcome in outcomes:
            if outcome.best_weights is None:
                continue
            if best is None or outcome.best_score > best.best_score:
                best = outcome
        accepted = sum(int(o.sample_ids.size) for o in outcomes)
        rejected = sum(o.rejected for o in outcomes)
        label = constraints.describe() if constraints is not None else "unconstrained"
        if best is None or best.best_weights is None:
            raise InfeasibleConstraintsError(
                f"Could not find a valid portfolio with given constraints ({label}); "
                f"0 of {rejected} samples accepted"
            )

        stats = portfolio_stats(names, best.best_weights, mu, sigma, problem.risk_free, problem.vol_floor)
        points: List[SimulationPoint] = []
        for outcome in outcomes:
            points.extend(
                SimulationPoint(float(r), float(v), float(s))
                for r, v, s in zip(outcome.returns, outcome.volatilities, outcome.sharpes)
            )
        elapsed = perf_counter() - start_time
        logger.info(
            "Optimization done | objective=%s accepted=%d rejected=%d best=%.6f elapsed=%.3fs",
            problem.objective.value,
            accepted,
            rejected,
            best.best_score,
            elapsed,
        )
        return OptimizationResult(
            best=stats,
            simulations=tuple(downsample(points, self.cfg.max_points)),
            accepted=accepted,
            rejected=rejected,
            iterations=accepted + rejected,
            seed=int(seq.entropy),  # type: ignore[arg-type]
            objective=problem.objective.value,
            elapsed=elapsed,
            truncated=truncated,
            constraints=label,
        )

    # ---- internals ----
    def _sample(
        self,
        problem: _Problem,
        rngs: List[np.random.Generator],
        cancel_event: Optional[threading.Event],
        start_time: float,
    ) -> Tuple[List[_ChunkOutcome], bool]:
        workers = max(1, int(self.cfg.workers or 1))
        outcomes: List[_ChunkOutcome] = []
        truncated = False
        total = len(rngs)
        executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
        try:
            for wave_start in range(0, total, workers):
                if cancel_event is not None and cancel_event.is_set():
                    raise OptimizationCancelledError(
                        f"Optimization cancelled after {wave_start} of {total} chunks"
                    )
                if (
                    outcomes
                    and self.cfg.max_runtime is not None
                    and perf_counter() - start_time >= self.cfg.max_runtime
                ):
                    logger.info("Runtime budget reached after %d of %d chunks", wave_start, total)
                    truncated = True
                    break
                wave = range(wave_start, min(wave_start + workers, total))
                if executor is None:
                    results = [_run_chunk(problem, i, rngs[i]) for i in wave]
                else:
                    results = list(executor.map(lambda i: _run_chunk(problem, i, rngs[i]), wave))
                outcomes.extend(results)
                if (wave_start // workers) % self.cfg.log_every == 0:
                    best_so_far = max((o.best_score for o in outcomes), default=-math.inf)
                    logger.debug(
                        "Chunk %03d | accepted=%d best=%.6f",
                        wave_start,
                        sum(int(o.sample_ids.size) for o in outcomes),
                        best_so_far,
                    )
        finally:
            if executor is not None:
                executor.shutdown(wait=True)
        return outcomes, truncated

    def _validate(self, mu: np.ndarray, cov: np.ndarray, n: int) -> None:
        if mu.shape != (n,):
            raise ValueError("mean must have one entry per ticker")
        if cov.shape != (n, n):
            raise ValueError("covariance must be (n,n)")
        if not (np.all(np.isfinite(mu)) and np.all(np.isfinite(cov))):
            raise ValueError("mean and covariance must be finite")

    def _check_reachable(
        self,
        constraints: Optional[ConstraintSet],
        n: int,
        membership: Optional[np.ndarray],
    ) -> None:
        if constraints is None:
            return
        if constraints.max_asset_weight is not None and constraints.max_asset_weight * n < 1.0 - 1e-12:
            raise InfeasibleConstraintsError(
                "Could not find a valid portfolio with given constraints "
                f"({constraints.describe()}); {n} assets cannot reach full investment"
            )
        if constraints.max_sector_weight is not None and membership is not None:
            if constraints.max_sector_weight * membership.shape[1] < 1.0 - 1e-12:
                raise InfeasibleConstraintsError(
                    "Could not find a valid portfolio with given constraints "
                    f"({constraints.describe()}); {membership.shape[1]} sectors cannot reach full investment"
                )


__all__ = [
    "MonteCarloOptimizer",
    "OptimizationObjective",
    "OptimizationResult",
    "OptimizerConfig",
    "SimulationPoint",
    "downsample",
]
