"""Public entry points of the simulation engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from core.time_keys import time_to_epoch_ms, time_to_number
from .combined import run_combined
from .lifecycle import LedgerRecorder, RunningRecorder, simulate_book
from .models import BacktestResult, BarSeries, ExitReason, OpenPosition, PositionSide, Signal
from .precompute import BarsLike, IndicatorSeries, SettingsLike, resolve_indicators
from .settings import NormalizedSettings, RunParameters, TradeDirection, TradeSizing, normalize_settings
from .signals import coerce_signals, prepare_signals
from .stats import calculate_backtest_stats, summarize

logger = logging.getLogger(__name__)

SignalsLike = Iterable[Signal | Mapping[str, Any]]

# Bars closer than this to the final bar count as the final bar for open-position checks.
_OPEN_POSITION_TOLERANCE_MS = 60_000


@dataclass(frozen=True)
class _RunContext:
    bars: BarSeries
    signals: list[Signal]
    settings: NormalizedSettings
    params: RunParameters
    series: IndicatorSeries


def _build_context(
    bars: BarsLike,
    signals: SignalsLike,
    initial_capital: float,
    position_size_percent: float,
    commission_percent: float,
    settings: SettingsLike,
    sizing: TradeSizing | Mapping[str, Any] | None,
    precomputed: IndicatorSeries | None,
) -> _RunContext | None:
    signal_list = coerce_signals(signals)
    series = BarSeries.from_bars(bars)
    if not signal_list or series.rows == 0:
        return None
    normalized = normalize_settings(settings)
    params = RunParameters(
        initial_capital=float(initial_capital),
        position_size_percent=float(position_size_percent),
        commission_percent=float(commission_percent),
        sizing=TradeSizing.from_raw(sizing),
    )
    indicators = resolve_indicators(series, normalized, precomputed)
    return _RunContext(bars=series, signals=signal_list, settings=normalized, params=params, series=indicators)


def run_backtest(
    bars: BarsLike,
    signals: SignalsLike,
    initial_capital: float,
    position_size_percent: float,
    commission_percent: float,
    settings: SettingsLike = None,
    sizing: TradeSizing | Mapping[str, Any] | None = None,
    precomputed: IndicatorSeries | None = None,
) -> BacktestResult:
    """Replay ``bars`` against ``signals`` and return the full ledger, equity curve and statistics.

    Empty bars or signals give an all-zero result. The call is pure: it can run
    concurrently with other calls that share the same bars and precomputed
    indicators.
    """
    context = _build_context(
        bars, signals, initial_capital, position_size_percent, commission_percent, settings, sizing, precomputed
    )
    if context is None:
        return BacktestResult.empty()

    if context.settings.trade_direction is TradeDirection.COMBINED:
        return run_combined(context.bars, context.signals, context.settings, context.params, context.series)

    prepared = prepare_signals(context.bars, context.signals, context.settings, context.series)
    ledger = LedgerRecorder()
    run = simulate_book(context.bars, prepared, context.settings, context.params, context.series, ledger)
    return calculate_backtest_stats(ledger.trades, ledger.equity_curve, run.initial_capital, run.final_capital)


def run_backtest_compact(
    bars: BarsLike,
    signals: SignalsLike,
    initial_capital: float,
    position_size_percent: float,
    commission_percent: float,
    settings: SettingsLike = None,
    sizing: TradeSizing | Mapping[str, Any] | None = None,
    precomputed: IndicatorSeries | None = None,
) -> BacktestResult:
    """Same statistics as ``run_backtest`` without per-trade or per-bar detail."""
    context = _build_context(
        bars, signals, initial_capital, position_size_percent, commission_percent, settings, sizing, precomputed
    )
    if context is None:
        return BacktestResult.empty()

    if context.settings.trade_direction is TradeDirection.COMBINED:
        return run_combined(
            context.bars, context.signals, context.settings, context.params, context.series, compact=True
        )

    prepared = prepare_signals(context.bars, context.signals, context.settings, context.series)
    recorder = RunningRecorder(context.params.initial_capital)
    run = simulate_book(context.bars, prepared, context.settings, context.params, context.series, recorder)
    return summarize(
        run.initial_capital,
        run.net_profit,
        recorder.stats,
        recorder.drawdown.max_drawdown,
        recorder.drawdown.max_drawdown_percent,
        recorder.stats.sharpe(),
    )


def _entry_bar_index(bars: BarSeries, entry_time: Any) -> int:
    entry_number = time_to_number(entry_time)
    if entry_number is None:
        return 0
    for index, time in enumerate(bars.times):
        number = time_to_number(time)
        if number is not None and number >= entry_number:
            return index
    return 0


def get_open_position(
    bars: BarsLike,
    signals: SignalsLike,
    settings: SettingsLike = None,
) -> OpenPosition | None:
    """Position still held on the final bar, or None when the last trade closed on its own."""
    series = BarSeries.from_bars(bars)
    signal_list = list(signals)
    if not signal_list or series.rows == 0:
        return None

    result = run_backtest(series, signal_list, 10_000, 100, 0, settings)
    if not result.trades:
        return None
    last_trade = result.trades[-1]
    if last_trade.exit_reason is not ExitReason.END_OF_DATA:
        return None

    last_time = series.times[-1]
    exit_ms = time_to_epoch_ms(last_trade.exit_time)
    last_ms = time_to_epoch_ms(last_time)
    if exit_ms is None or last_ms is None or abs(exit_ms - last_ms) > _OPEN_POSITION_TOLERANCE_MS:
        return None
    if time_to_number(last_trade.entry_time) is None:
        return None

    current_price = float(series.close[-1])
    factor = last_trade.type.factor
    take_profit = last_trade.take_profit_price
    normalized = normalize_settings(settings)
    if take_profit is None and normalized.take_profit_enabled and normalized.take_profit_percent is not None:
        take_profit = last_trade.entry_price * (1 + factor * normalized.take_profit_percent / 100)

    return OpenPosition(
        direction=PositionSide(last_trade.type),
        entry_time=last_trade.entry_time,
        entry_price=last_trade.entry_price,
        current_price=current_price,
        unrealized_pnl_percent=factor * (current_price - last_trade.entry_price) / last_trade.entry_price * 100,
        bars_in_trade=series.rows - 1 - _entry_bar_index(series, last_trade.entry_time),
        stop_loss_price=last_trade.stop_loss_price,
        take_profit_price=take_profit,
    )

