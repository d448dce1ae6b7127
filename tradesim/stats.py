"""Trade and equity statistics shared by the full and compact engine variants.

Both variants feed the same accumulators in the same order, so their
aggregate numbers are identical to the last bit.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from .models import BacktestResult, EquityPoint, Trade

SHARPE_MIN_TRADES = 5
SHARPE_MIN_STD_DEV = 1e-4
SHARPE_MAX_ABS = 8.0


def sanitize_sharpe(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(-SHARPE_MAX_ABS, min(SHARPE_MAX_ABS, value))


def sharpe_from_moments(mean_return: float, std_return: float, count: int) -> float:
    """Mean over standard deviation, forced to 0 on small samples or near-zero variance."""
    if not math.isfinite(mean_return) or not math.isfinite(std_return):
        return 0.0
    if count < SHARPE_MIN_TRADES or std_return < SHARPE_MIN_STD_DEV:
        return 0.0
    return sanitize_sharpe(mean_return / std_return)


def sharpe_from_returns(returns: Iterable[float]) -> float:
    finite = [value for value in returns if math.isfinite(value)]
    count = len(finite)
    if count < SHARPE_MIN_TRADES:
        return 0.0
    mean = sum(finite) / count
    variance = sum((value - mean) ** 2 for value in finite) / (count - 1)
    return sharpe_from_moments(mean, math.sqrt(max(0.0, variance)), count)


@dataclass
class TradeStatsAccumulator:
    """Running counts, profit/loss sums and Welford moments of per-trade percent returns."""

    total_trades: int = 0
    winning_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    mean_return: float = 0.0
    return_m2: float = 0.0

    def add(self, pnl: float, pnl_percent: float) -> None:
        self.total_trades += 1
        if pnl > 0:
            self.winning_trades += 1
            self.total_profit += pnl
        else:
            self.total_loss += abs(pnl)
        delta = pnl_percent - self.mean_return
        self.mean_return += delta / self.total_trades
        self.return_m2 += delta * (pnl_percent - self.mean_return)

    @property
    def losing_trades(self) -> int:
        return self.total_trades - self.winning_trades

    @property
    def std_return(self) -> float:
        if self.total_trades < 2:
            return 0.0
        return math.sqrt(self.return_m2 / (self.total_trades - 1))

    def sharpe(self) -> float:
        return sharpe_from_moments(self.mean_return, self.std_return, self.total_trades)

    def combined_with(self, other: "TradeStatsAccumulator") -> "TradeStatsAccumulator":
        """Counts and profit/loss sums of two books; return moments are not merged."""
        return TradeStatsAccumulator(
            total_trades=self.total_trades + other.total_trades,
            winning_trades=self.winning_trades + other.winning_trades,
            total_profit=self.total_profit + other.total_profit,
            total_loss=self.total_loss + other.total_loss,
        )


class DrawdownTracker:
    """Running peak-to-trough tracker; the peak starts at the initial capital."""

    def __init__(self, initial_capital: float):
        self.peak = initial_capital
        self.max_drawdown = 0.0
        self.max_drawdown_percent = 0.0

    def update(self, equity: float) -> None:
        if equity > self.peak:
            self.peak = equity
        drawdown = self.peak - equity
        if drawdown > self.max_drawdown:
            self.max_drawdown = drawdown
            self.max_drawdown_percent = drawdown / self.peak * 100 if self.peak > 0 else 0.0


def calculate_max_drawdown(equity: Iterable[float | EquityPoint], initial_capital: float) -> tuple[float, float]:
    tracker = DrawdownTracker(initial_capital)
    for point in equity:
        tracker.update(point.value if isinstance(point, EquityPoint) else point)
    return tracker.max_drawdown, tracker.max_drawdown_percent


def profit_factor(total_profit: float, total_loss: float) -> float:
    if total_loss > 0:
        return total_profit / total_loss
    return math.inf if total_profit > 0 else 0.0


def summarize(
    initial_capital: float,
    net_profit: float,
    stats: TradeStatsAccumulator,
    max_drawdown: float,
    max_drawdown_percent: float,
    sharpe_ratio: float,
    trades: list[Trade] | None = None,
    equity_curve: list[EquityPoint] | None = None,
) -> BacktestResult:
    count = stats.total_trades
    wins = stats.winning_trades
    losses = stats.losing_trades
    win_rate = wins / count if count > 0 else 0.0
    loss_rate = losses / count if count > 0 else 0.0
    avg_win = stats.total_profit / wins if wins > 0 else 0.0
    avg_loss = stats.total_loss / losses if losses > 0 else 0.0
    return BacktestResult(
        trades=trades if trades is not None else [],
        net_profit=net_profit,
        net_profit_percent=net_profit / initial_capital * 100 if initial_capital > 0 else 0.0,
        win_rate=win_rate * 100,
        expectancy=win_rate * avg_win - loss_rate * avg_loss,
        avg_trade=net_profit / count if count > 0 else 0.0,
        profit_factor=profit_factor(stats.total_profit, stats.total_loss),
        max_drawdown=max_drawdown,
        max_drawdown_percent=max_drawdown_percent,
        total_trades=count,
        winning_trades=wins,
        losing_trades=losses,
        avg_win=avg_win,
        avg_loss=avg_loss,
        sharpe_ratio=sanitize_sharpe(sharpe_ratio),
        equity_curve=equity_curve if equity_curve is not None else [],
    )


def calculate_backtest_stats(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
    final_capital: float,
) -> BacktestResult:
    """Statistics for a finished run from its ledger and equity curve."""
    stats = TradeStatsAccumulator()
    for trade in trades:
        stats.add(trade.pnl, trade.pnl_percent)
    max_drawdown, max_drawdown_percent = calculate_max_drawdown(equity_curve, initial_capital)
    return summarize(
        initial_capital,
        final_capital - initial_capital,
        stats,
        max_drawdown,
        max_drawdown_percent,
        stats.sharpe(),
        trades=list(trades),
        equity_curve=list(equity_curve),
    )


def equity_returns(values: Sequence[float]) -> list[float]:
    """Bar-to-bar percent changes of an equity series, skipping non-positive bases."""
    returns: list[float] = []
    for previous, current in zip(values, values[1:]):
        if previous > 0:
            returns.append((current - previous) / previous * 100)
    return returns
