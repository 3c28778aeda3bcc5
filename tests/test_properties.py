import numpy as np
import pytest

hypothesis = pytest.importorskip("hypothesis")
from hypothesis import given, settings  # noqa: E402
from hypothesis import strategies as st  # noqa: E402

from portfolio_engine.backtest.backtest import max_drawdown  # noqa: E402
from portfolio_engine.data.series import ReturnPanel  # noqa: E402
from portfolio_engine.optimizer import downsample  # noqa: E402
from portfolio_engine.risk.contribution import risk_return_contribution  # noqa: E402
from portfolio_engine.risk.correlation import correlation_matrix  # noqa: E402
from portfolio_engine.risk.covariance import Moments  # noqa: E402
from portfolio_engine.risk.var import historical_var  # noqa: E402
from portfolio_engine.scenario.runner import Scenario, run_scenario  # noqa: E402

HYPOTHESIS_EXAMPLES = 50

_returns = st.floats(min_value=-0.2, max_value=0.2, allow_nan=False, allow_infinity=False)
_weight = st.floats(min_value=0.01, max_value=1.0)
_weights = st.lists(_weight, min_size=2, max_size=6)


def _normalise(raw):
    w = np.asarray(raw, dtype=float)
    return w / w.sum()


@settings(max_examples=HYPOTHESIS_EXAMPLES, deadline=None)
@given(st.lists(st.floats(min_value=1e-3, max_value=1e4), min_size=1, max_size=200))
def test_max_drawdown_bounds(curve):
    value = max_drawdown(np.asarray(curve))
    assert -1.0 <= value <= 0.0


@settings(max_examples=HYPOTHESIS_EXAMPLES, deadline=None)
@given(st.integers(min_value=0, max_value=5_000), st.integers(min_value=1, max_value=600))
def test_downsample_never_exceeds_cap(total, cap):
    kept = downsample(list(range(total)), cap)
    assert len(kept) <= cap
    if total:
        assert kept[0] == 0


@settings(max_examples=HYPOTHESIS_EXAMPLES, deadline=None)
@given(st.integers(min_value=2, max_value=6), st.integers(min_value=0, max_value=2**32 - 1))
def test_contributions_add_up(n, seed):
    rng = np.random.default_rng(seed)
    a = rng.normal(scale=0.2, size=(n, n))
    moments = Moments(
        tickers=tuple(f"T{i}" for i in range(n)),
        mean=rng.normal(0.08, 0.05, n),
        cov=a @ a.T,
    )
    w = _normalise(rng.uniform(0.01, 1.0, n))
    rows = risk_return_contribution(moments, dict(zip(moments.tickers, w)))
    vol = float(np.sqrt(w @ moments.cov @ w))
    assert sum(r.return_contribution for r in rows) == pytest.approx(float(w @ moments.mean))
    assert sum(r.risk_contribution for r in rows) == pytest.approx(vol, rel=1e-9, abs=1e-12)


@settings(max_examples=HYPOTHESIS_EXAMPLES, deadline=None)
@given(st.integers(min_value=2, max_value=5), st.integers(min_value=0, max_value=2**32 - 1))
def test_correlation_is_symmetric_with_unit_diagonal(n, seed):
    rng = np.random.default_rng(seed)
    returns = rng.normal(scale=0.01, size=(60, n))
    panel = ReturnPanel(tuple(f"T{i}" for i in range(n)), tuple(range(60)), returns)
    m = correlation_matrix(panel).matrix
    assert np.array_equal(m, m.T)
    assert np.array_equal(np.diag(m), np.ones(n))
    assert np.all(np.abs(m) <= 1.0)


@settings(max_examples=HYPOTHESIS_EXAMPLES, deadline=None)
@given(st.lists(st.tuples(_returns, _returns), min_size=20, max_size=300), st.tuples(_weight, _weight))
def test_cvar_never_below_var(rows, raw):
    w = _normalise(raw)
    panel = ReturnPanel(("A", "B"), tuple(range(len(rows))), np.asarray(rows, dtype=float))
    result = historical_var(panel, {"A": w[0], "B": w[1]}, min_observations=20)
    assert result.cvar95 >= result.var95


@settings(max_examples=HYPOTHESIS_EXAMPLES, deadline=None)
@given(_weights, st.lists(_returns, min_size=6, max_size=6))
def test_identity_scenario_changes_nothing(raw, mus):
    w = _normalise(raw)
    tickers = [f"T{i}" for i in range(len(w))]
    sectors = {t: ("Technology" if i % 2 else "Energy") for i, t in enumerate(tickers)}
    flat = Scenario("flat", "Flat", impact={"Technology": 1.0, "Energy": 1.0})
    result = run_scenario(dict(zip(tickers, w)), dict(zip(tickers, mus)), flat, sectors)
    assert result.impact_percentage == 0.0
