"""Turn raw strategy signals into the ordered queue of executable events."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .filters import passes_regime_filters, passes_trade_filter
from .models import BarSeries, PositionSide, PreparedSignal, Signal, SignalType
from .precompute import BarsLike, IndicatorSeries, SettingsLike, resolve_indicators
from .settings import ExecutionModel, NormalizedSettings, TradeDirection, TradeFilterMode, normalize_settings

logger = logging.getLogger(__name__)


def coerce_signals(signals: Iterable[Signal | Mapping[str, Any]]) -> list[Signal]:
    """Signals as ``Signal`` records, skipping entries whose type is neither buy nor sell."""
    coerced: list[Signal] = []
    skipped = 0
    for raw in signals:
        if isinstance(raw, Mapping) and not SignalType.is_valid(raw.get("type")):
            skipped += 1
            continue
        coerced.append(Signal.from_raw(raw))
    if skipped:
        logger.debug("Skipped %s signals with an unknown type", skipped)
    return coerced


def resolve_signal_index(bars: BarSeries, signal: Signal) -> int | None:
    """Bar the signal refers to: its explicit bar_index, else a lookup by time."""
    index = signal.bar_index if signal.bar_index is not None else bars.index_of(signal.time)
    if index is None or index < 0 or index >= bars.rows:
        return None
    return index


def resolve_execution_price(
    bars: BarSeries,
    signal: Signal,
    signal_index: int,
    execution_index: int,
    settings: NormalizedSettings,
) -> float:
    if settings.execution_model is ExecutionModel.SIGNAL_CLOSE and execution_index == signal_index:
        return signal.price
    if settings.execution_model is ExecutionModel.NEXT_OPEN:
        return float(bars.open[execution_index])
    return float(bars.close[execution_index])


def _prepared(
    bars: BarSeries,
    signal: Signal,
    signal_type: SignalType,
    signal_index: int,
    execution_index: int,
    order: int,
    settings: NormalizedSettings,
) -> PreparedSignal:
    return PreparedSignal(
        time=bars.times[execution_index],
        type=signal_type,
        price=resolve_execution_price(bars, signal, signal_index, execution_index, settings),
        bar_index=execution_index,
        order=order,
        trigger_price=signal.price,
        reason=signal.reason,
    )


def _prepare_entry(
    bars: BarSeries,
    signal: Signal,
    signal_index: int,
    order: int,
    settings: NormalizedSettings,
    series: IndicatorSeries,
) -> PreparedSignal | None:
    decision_index = signal_index + 1 if settings.trade_filter_mode is TradeFilterMode.CLOSE else signal_index
    execution_index = decision_index + settings.execution_shift
    if execution_index >= bars.rows:
        return None

    side = PositionSide.from_signal(signal.type)
    if not passes_trade_filter(bars, decision_index, settings, series, side):
        return None
    if not passes_regime_filters(bars, decision_index, settings, series, side):
        return None
    return _prepared(bars, signal, signal.type, signal_index, execution_index, order, settings)


def prepare_signals(
    bars: BarSeries,
    signals: Iterable[Signal | Mapping[str, Any]],
    settings: NormalizedSettings,
    series: IndicatorSeries,
    direction: TradeDirection | None = None,
) -> list[PreparedSignal]:
    """Resolve, filter and order signals for the bar loop.

    Under a single-side direction the opposite signal type is an exit: it only
    gets an execution bar and price, no filters. Every other signal is an entry
    candidate and must pass the trade and regime filters at its decision bar.
    The result is sorted by execution bar, then by input order.
    """
    direction = direction or settings.trade_direction
    prepared: list[PreparedSignal] = []
    dropped = 0

    for order, signal in enumerate(coerce_signals(signals)):
        signal_index = resolve_signal_index(bars, signal)
        if signal_index is None:
            dropped += 1
            continue

        if direction.is_single_side:
            side = PositionSide.LONG if direction is TradeDirection.LONG else PositionSide.SHORT
            if signal.type is side.exit_signal:
                execution_index = signal_index + settings.execution_shift
                if execution_index >= bars.rows:
                    dropped += 1
                    continue
                prepared.append(
                    _prepared(bars, signal, signal.type, signal_index, execution_index, order, settings)
                )
                continue

        entry = _prepare_entry(bars, signal, signal_index, order, settings, series)
        if entry is None:
            dropped += 1
            continue
        prepared.append(entry)

    prepared.sort(key=lambda item: (item.bar_index, item.order))
    if dropped:
        logger.debug("Prepared %s signals, dropped %s", len(prepared), dropped)
    return prepared


def prepare_signals_for_scanner(
    bars: BarsLike,
    signals: Iterable[Signal | Mapping[str, Any]],
    settings: SettingsLike = None,
) -> list[PreparedSignal]:
    """Prepare signals exactly as the engine would, for callers that only need the queue."""
    series = BarSeries.from_bars(bars)
    signal_list = list(signals)
    if not signal_list or series.rows == 0:
        return []
    normalized = normalize_settings(settings)
    indicators = resolve_indicators(series, normalized)
    return prepare_signals(series, signal_list, normalized, indicators)
