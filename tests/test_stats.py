import math

import pytest

from tradesim.models import EquityPoint
from tradesim.stats import (
    SHARPE_MAX_ABS,
    DrawdownTracker,
    TradeStatsAccumulator,
    calculate_max_drawdown,
    equity_returns,
    profit_factor,
    sanitize_sharpe,
    sharpe_from_returns,
    summarize,
)


def test_sharpe_needs_five_samples():
    assert sharpe_from_returns([1.0, 2.0, 3.0, 4.0]) == 0.0
    assert sharpe_from_returns([1.0, 2.0, 3.0, 4.0, 5.0]) == pytest.approx(3.0 / math.sqrt(2.5))


def test_sharpe_zero_for_flat_returns():
    assert sharpe_from_returns([1.0] * 10) == 0.0


def test_sharpe_is_clamped_and_finite():
    assert sanitize_sharpe(50.0) == SHARPE_MAX_ABS
    assert sanitize_sharpe(-50.0) == -SHARPE_MAX_ABS
    assert sanitize_sharpe(float("nan")) == 0.0
    assert sharpe_from_returns([10.0, 10.001, 10.0, 10.001, 10.0, 10.0005]) == SHARPE_MAX_ABS


def test_accumulator_matches_two_pass_moments():
    returns = [2.0, -1.0, 3.5, 0.5, -2.0, 1.0]
    stats = TradeStatsAccumulator()
    for value in returns:
        stats.add(value * 10, value)

    assert stats.total_trades == 6
    assert stats.winning_trades == 4
    assert stats.losing_trades == 2
    assert stats.total_profit == pytest.approx(70.0)
    assert stats.total_loss == pytest.approx(30.0)
    assert stats.sharpe() == pytest.approx(sharpe_from_returns(returns))


def test_break_even_trade_counts_as_loss():
    stats = TradeStatsAccumulator()
    stats.add(0.0, 0.0)

    assert stats.winning_trades == 0
    assert stats.losing_trades == 1


def test_drawdown_peak_starts_at_initial_capital():
    assert calculate_max_drawdown([90.0, 95.0], 100.0) == (pytest.approx(10.0), pytest.approx(10.0))
    points = [EquityPoint("a", 120.0), EquityPoint("b", 90.0), EquityPoint("c", 130.0)]
    assert calculate_max_drawdown(points, 100.0) == (pytest.approx(30.0), pytest.approx(25.0))


def test_drawdown_never_decreases():
    tracker = DrawdownTracker(100.0)
    seen = []
    for value in [100.0, 80.0, 120.0, 110.0, 140.0, 70.0, 150.0]:
        tracker.update(value)
        seen.append(tracker.max_drawdown)

    assert seen == sorted(seen)
    assert tracker.max_drawdown == pytest.approx(70.0)
    assert tracker.max_drawdown_percent == pytest.approx(50.0)


def test_profit_factor_edges():
    assert profit_factor(10.0, 5.0) == 2.0
    assert math.isinf(profit_factor(10.0, 0.0))
    assert profit_factor(0.0, 0.0) == 0.0


def test_equity_returns_skip_non_positive_base():
    assert equity_returns([100.0, 110.0, 0.0, 50.0]) == pytest.approx([10.0, -100.0])


def test_summarize_derived_figures():
    stats = TradeStatsAccumulator()
    for pnl in (30.0, -10.0, 20.0, -20.0):
        stats.add(pnl, pnl / 10)

    result = summarize(1000.0, 20.0, stats, 25.0, 2.5, 0.0)

    assert result.win_rate == pytest.approx(50.0)
    assert result.avg_win == pytest.approx(25.0)
    assert result.avg_loss == pytest.approx(15.0)
    assert result.expectancy == pytest.approx(0.5 * 25.0 - 0.5 * 15.0)
    assert result.avg_trade == pytest.approx(5.0)
    assert result.net_profit_percent == pytest.approx(2.0)
    assert result.profit_factor == pytest.approx(50.0 / 30.0)
    assert result.trades == []
