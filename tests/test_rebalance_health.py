import pytest

from portfolio_engine.errors import InvalidAllocationError
from portfolio_engine.portfolio.health import FAIR, GOOD, NEEDS_IMPROVEMENT, diversification_grade, health_check, risk_score
from portfolio_engine.portfolio.rebalance import rebalance_plan


def test_rebalance_trades_respect_threshold() -> None:
    plan = rebalance_plan(
        {"AAPL": 0.5, "MSFT": 0.5},
        {"AAPL": 0.4, "MSFT": 0.597, "XOM": 0.003},
        portfolio_value=20_000,
    )
    assert [(t.ticker, t.action) for t in plan.trades] == [("AAPL", "SELL"), ("MSFT", "BUY")]
    sell, buy = plan.trades
    assert sell.amount == pytest.approx(2_000.0)
    assert buy.weight_change == pytest.approx(0.097)
    assert plan.turnover == pytest.approx(0.5 * (0.1 + 0.097))


def test_rebalance_sells_exited_positions() -> None:
    plan = rebalance_plan({"AAPL": 0.5, "BTC": 0.5}, {"AAPL": 1.0}, portfolio_value=1_000)
    actions = {t.ticker: (t.action, t.amount) for t in plan.trades}
    assert actions == {"AAPL": ("BUY", 500.0), "BTC": ("SELL", 500.0)}
    assert plan.to_dict()["turnover"] == pytest.approx(0.5)


def test_rebalance_validation() -> None:
    with pytest.raises(InvalidAllocationError):
        rebalance_plan({"AAPL": 0.5}, {"AAPL": 1.0})
    with pytest.raises(ValueError):
        rebalance_plan({"AAPL": 1.0}, {"AAPL": 1.0}, portfolio_value=0)
    assert rebalance_plan({"AAPL": 1.0}, {"AAPL": 1.0}).trades == []


@pytest.mark.parametrize(
    "sectors, countries, assets, grade",
    [(5, 3, 10, GOOD), (5, 3, 9, FAIR), (3, 1, 3, FAIR), (1, 2, 2, FAIR), (2, 1, 12, NEEDS_IMPROVEMENT)],
)
def test_diversification_grade(sectors, countries, assets, grade) -> None:
    assert diversification_grade(sectors, countries, assets) == grade


@pytest.mark.parametrize(
    "vol, crypto, score",
    [(0.40, 0.0, 9), (0.30, 0.0, 8), (0.25, 0.0, 7), (0.20, 0.0, 6), (0.15, 0.0, 5), (0.12, 0.0, 4), (0.05, 0.0, 3),
     (0.40, 0.25, 10), (0.15, 0.15, 6), (0.05, 0.3, 5)],
)
def test_risk_score_bands(vol, crypto, score) -> None:
    assert risk_score(vol, crypto) == score


def test_health_check_report(asset_book) -> None:
    report = health_check({"AAPL": 0.4, "MSFT": 0.3, "BTC": 0.3}, asset_book, volatility=0.3)
    assert report.grade == FAIR
    assert report.sector_count == 2
    assert report.country_count == 2
    assert report.top_sectors[0] == ("Technology", pytest.approx(0.7))
    assert report.crypto_weight == pytest.approx(0.3)
    assert report.risk_score == 10
    assert "diversification" in report.to_dict()["description"]


def test_health_check_needs_metadata(asset_book) -> None:
    with pytest.raises(KeyError, match="TSLA"):
        health_check({"TSLA": 1.0}, asset_book, volatility=0.2)
    solo = health_check({"AAPL": 1.0}, asset_book, volatility=0.2)
    assert solo.grade == NEEDS_IMPROVEMENT
