"""Combined direction: independent long and short books on split capital, merged into one result."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Sequence

from core.time_keys import time_key, time_sort_key
from .lifecycle import BookRun, LedgerRecorder, RunningRecorder, simulate_book
from .models import BacktestResult, BarSeries, EquityPoint, Signal, SignalType, Trade
from .precompute import IndicatorSeries
from .settings import NormalizedSettings, RunParameters, TradeDirection
from .signals import prepare_signals, resolve_signal_index
from .stats import TradeStatsAccumulator, calculate_max_drawdown, equity_returns, sharpe_from_returns, summarize

logger = logging.getLogger(__name__)


def split_capital(initial_capital: float) -> tuple[float, float]:
    """Half to the long book rounded down to the cent; the remainder goes to the short book."""
    long_capital = math.floor(initial_capital * 100 / 2) / 100
    # When the halves straddle a power of two the long half can carry a bit below
    # the capital's precision; drop it so the two halves add back exactly.
    while long_capital + (initial_capital - long_capital) != initial_capital:
        long_capital = math.nextafter(long_capital, 0.0)
    return long_capital, initial_capital - long_capital


def conflicting_bars(bars: BarSeries, signals: Sequence[Signal]) -> set[int]:
    """Signal bars that carry both a buy and a sell."""
    buys: set[int] = set()
    sells: set[int] = set()
    for signal in signals:
        index = resolve_signal_index(bars, signal)
        if index is None:
            continue
        (buys if signal.type is SignalType.BUY else sells).add(index)
    return buys & sells


def split_signals(bars: BarSeries, signals: Sequence[Signal]) -> tuple[list[Signal], list[Signal]]:
    """Signals for the long and short books with contested entries removed.

    On a contested bar the long book loses its buy and the short book loses its
    sell; the opposite signal stays in each book and can still act as an exit.
    """
    conflicts = conflicting_bars(bars, signals)
    if conflicts:
        logger.debug("Ignoring entries on %s contested bars", len(conflicts))
    long_signals: list[Signal] = []
    short_signals: list[Signal] = []
    for signal in signals:
        contested = resolve_signal_index(bars, signal) in conflicts
        if not (contested and signal.type is SignalType.BUY):
            long_signals.append(signal)
        if not (contested and signal.type is SignalType.SELL):
            short_signals.append(signal)
    return long_signals, short_signals


@dataclass
class _BookOutcome:
    run: BookRun
    stats: TradeStatsAccumulator
    equity_by_time: dict[str, float]
    trades: list[Trade]


def _run_side(
    bars: BarSeries,
    signals: Sequence[Signal],
    settings: NormalizedSettings,
    params: RunParameters,
    series: IndicatorSeries,
    direction: TradeDirection,
    compact: bool,
) -> _BookOutcome:
    side_settings = settings.for_direction(direction)
    prepared = prepare_signals(bars, signals, side_settings, series, direction)

    if compact:
        recorder = RunningRecorder(params.initial_capital, keep_equity=True)
        run = simulate_book(bars, prepared, side_settings, params, series, recorder, direction)
        equity = {time_key(time): value for time, value in zip(bars.times, recorder.equity_values)}
        return _BookOutcome(run=run, stats=recorder.stats, equity_by_time=equity, trades=[])

    ledger = LedgerRecorder()
    run = simulate_book(bars, prepared, side_settings, params, series, ledger, direction)
    stats = TradeStatsAccumulator()
    for trade in ledger.trades:
        stats.add(trade.pnl, trade.pnl_percent)
    equity = {time_key(point.time): point.value for point in ledger.equity_curve}
    return _BookOutcome(run=run, stats=stats, equity_by_time=equity, trades=ledger.trades)


def _merge_trades(long_trades: list[Trade], short_trades: list[Trade]) -> list[Trade]:
    merged = sorted(
        [*long_trades, *short_trades],
        key=lambda trade: (time_sort_key(trade.exit_time), time_sort_key(trade.entry_time)),
    )
    return [replace(trade, id=number) for number, trade in enumerate(merged, start=1)]


def run_combined(
    bars: BarSeries,
    signals: Sequence[Signal],
    settings: NormalizedSettings,
    params: RunParameters,
    series: IndicatorSeries,
    compact: bool = False,
) -> BacktestResult:
    """Run long-only and short-only books and reconcile them into a single result.

    Drawdown and Sharpe come from the merged per-bar equity series; they are
    path dependent and cannot be combined from the books' own figures.
    """
    long_capital, short_capital = split_capital(params.initial_capital)
    long_signals, short_signals = split_signals(bars, signals)

    long_book = _run_side(
        bars, long_signals, settings, replace(params, initial_capital=long_capital), series,
        TradeDirection.LONG, compact,
    )
    short_book = _run_side(
        bars, short_signals, settings, replace(params, initial_capital=short_capital), series,
        TradeDirection.SHORT, compact,
    )

    equity_values: list[float] = []
    equity_curve: list[EquityPoint] = []
    for time in bars.times:
        key = time_key(time)
        value = long_book.equity_by_time.get(key, long_capital) + short_book.equity_by_time.get(key, short_capital)
        equity_values.append(value)
        if not compact:
            equity_curve.append(EquityPoint(time=time, value=value))

    max_drawdown, max_drawdown_percent = calculate_max_drawdown(equity_values, params.initial_capital)
    sharpe = sharpe_from_returns(equity_returns(equity_values))
    stats = long_book.stats.combined_with(short_book.stats)
    net_profit = long_book.run.net_profit + short_book.run.net_profit

    return summarize(
        params.initial_capital,
        net_profit,
        stats,
        max_drawdown,
        max_drawdown_percent,
        sharpe,
        trades=None if compact else _merge_trades(long_book.trades, short_book.trades),
        equity_curve=None if compact else equity_curve,
    )
